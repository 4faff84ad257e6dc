"""Visual SLAM building blocks: Lie groups, cameras, triangulation, fitting, pose graphs and mapping."""

__version__ = "0.1.0"

__all__ = [
    "algorithm",
    "backend",
    "camera",
    "config",
    "curve_fitting",
    "dataset",
    "dense_mapping",
    "entities",
    "imaging",
    "landmark_map",
    "lie",
    "pointcloud",
    "pose_graph",
    "projection",
    "trajectory",
]