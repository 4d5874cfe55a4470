"""
ErgoPulse Landmark Provider
MediaPipe Tasks pose + face landmarkers producing the engine's inputs:
17 COCO-order keypoints and a flat 468 x (x, y, z) face mesh.
"""

import logging
import os
import urllib.request
from pathlib import Path
from typing import List, Optional, Tuple

import cv2
import mediapipe as mp
import numpy as np

from ergo_engine.landmarks import FaceLandmarks
from ergo_engine.types import Keypoint

logger = logging.getLogger("ergo.landmarks")

_POSE_MODEL_URL = (
    'https://storage.googleapis.com/mediapipe-models/'
    'pose_landmarker/pose_landmarker_lite/float16/latest/pose_landmarker_lite.task'
)
_FACE_MODEL_URL = (
    'https://storage.googleapis.com/mediapipe-models/'
    'face_landmarker/face_landmarker/float16/latest/face_landmarker.task'
)

# BlazePose 33-landmark index for each COCO keypoint, in COCO order
POSE_TO_COCO = (0, 2, 5, 7, 8, 11, 12, 13, 14, 15, 16, 23, 24, 25, 26, 27, 28)
COCO_NAMES = (
    "nose", "left_eye", "right_eye", "left_ear", "right_ear",
    "left_shoulder", "right_shoulder", "left_elbow", "right_elbow",
    "left_wrist", "right_wrist", "left_hip", "right_hip",
    "left_knee", "right_knee", "left_ankle", "right_ankle",
)


def ensure_models_downloaded(models_dir: Path) -> Tuple[str, str]:
    """Download MediaPipe .task model files if not already cached."""
    os.makedirs(models_dir, exist_ok=True)
    paths = []
    for url in (_POSE_MODEL_URL, _FACE_MODEL_URL):
        path = os.path.join(models_dir, url.rsplit('/', 1)[-1])
        if not os.path.exists(path):
            logger.info(f"Downloading {os.path.basename(path)} ...")
            urllib.request.urlretrieve(url, path)
            logger.info(f"Saved {os.path.basename(path)}")
        paths.append(path)
    return paths[0], paths[1]


def pose_to_keypoints(pose_landmarks) -> List[Keypoint]:
    """Map one BlazePose landmark list onto COCO-17 keypoints, visibility as confidence."""
    keypoints = []
    for name, idx in zip(COCO_NAMES, POSE_TO_COCO):
        lm = pose_landmarks[idx]
        visibility = getattr(lm, "visibility", None)
        keypoints.append(Keypoint(
            x=float(lm.x),
            y=float(lm.y),
            confidence=float(visibility) if visibility is not None else 0.0,
            name=name,
        ))
    return keypoints


def face_to_flat(face_landmarks) -> List[float]:
    """First 468 mesh points flattened to [x0, y0, z0, x1, ...] (iris points dropped)."""
    points = face_landmarks[:FaceLandmarks.COUNT]
    return [v for lm in points for v in (float(lm.x), float(lm.y), float(lm.z))]


def decode_frame(data: bytes) -> Optional[np.ndarray]:
    """Decode a JPEG/PNG payload to a BGR frame; None when undecodable."""
    buf = np.frombuffer(data, dtype=np.uint8)
    if buf.size == 0:
        return None
    return cv2.imdecode(buf, cv2.IMREAD_COLOR)


class MediaPipeLandmarkProvider:
    def __init__(self, models_dir: Path):
        pose_path, face_path = ensure_models_downloaded(models_dir)

        pose_opts = mp.tasks.vision.PoseLandmarkerOptions(
            base_options=mp.tasks.BaseOptions(model_asset_path=pose_path),
            running_mode=mp.tasks.vision.RunningMode.IMAGE,
            num_poses=1,
        )
        self._pose_landmarker = mp.tasks.vision.PoseLandmarker.create_from_options(pose_opts)

        face_opts = mp.tasks.vision.FaceLandmarkerOptions(
            base_options=mp.tasks.BaseOptions(model_asset_path=face_path),
            running_mode=mp.tasks.vision.RunningMode.IMAGE,
            num_faces=1,
        )
        self._face_landmarker = mp.tasks.vision.FaceLandmarker.create_from_options(face_opts)
        logger.info("MediaPipe pose + face landmarkers loaded")

    @staticmethod
    def _to_image(frame: np.ndarray):
        frame_rgb = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)
        return mp.Image(image_format=mp.ImageFormat.SRGB, data=np.ascontiguousarray(frame_rgb))

    def infer_keypoints(self, frame: np.ndarray, image=None) -> List[Keypoint]:
        if image is None:
            image = self._to_image(frame)
        result = self._pose_landmarker.detect(image)
        if not result.pose_landmarks:
            return []
        return pose_to_keypoints(result.pose_landmarks[0])

    def infer_face(self, frame: np.ndarray, keypoints: Optional[List[Keypoint]] = None,
                   image=None) -> Optional[List[float]]:
        if image is None:
            image = self._to_image(frame)
        result = self._face_landmarker.detect(image)
        if not result.face_landmarks:
            return None
        return face_to_flat(result.face_landmarks[0])

    def process(self, frame: np.ndarray) -> Tuple[List[Keypoint], Optional[List[float]]]:
        """Both landmark sets for one BGR frame, sharing one converted image."""
        image = self._to_image(frame)
        keypoints = self.infer_keypoints(frame, image=image)
        return keypoints, self.infer_face(frame, keypoints, image=image)

    def close(self):
        for landmarker in (self._pose_landmarker, self._face_landmarker):
            landmarker.close()
