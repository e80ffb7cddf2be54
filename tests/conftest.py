"""Shared fixtures: sample detections and fake inference models."""
import sys
from pathlib import Path

import numpy as np
import pytest

# The modules live at the project root
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

import mediapipe_utils as mpu


def make_detection(x_center=0.5, y_center=0.5, size=0.3, score=0.9):
    """Upright palm: middle finger MCP (keypoint 2) straight above the wrist (keypoint 0)."""
    half = size / 2
    keypoints = np.array([
        [x_center, y_center + half * 0.6],          # wrist
        [x_center - half * 0.5, y_center - half],
        [x_center, y_center - half * 0.6],          # middle finger MCP
        [x_center + half * 0.5, y_center - half],
        [x_center + half, y_center - half * 0.5],
        [x_center - half, y_center],
        [x_center - half, y_center - half * 0.5],
    ])
    return mpu.DetectionResult(score, mpu.Rect(x_center, y_center, size, size), keypoints)


class FakePalmModel:
    """Palm detector answering with one palm centered in the image, or nothing."""
    def __init__(self, input_size=(128, 128), found=True):
        self.input_size = input_size
        self.found = found
        self.calls = 0
        self.last_input = None
        anchors = mpu.generate_handtracker_anchors(*input_size)
        scale = input_size[0]
        target = make_detection()
        k = int(np.argmin(np.linalg.norm(anchors[:,:2] - target.rect.center, axis=1)))
        self.bboxes = np.zeros((anchors.shape[0], 18), dtype=np.float32)
        self.bboxes[k,0:2] = (target.rect.center - anchors[k,0:2]) * scale
        self.bboxes[k,2:4] = (target.rect.width * scale, target.rect.height * scale)
        self.bboxes[k,4:18] = ((target.keypoints - anchors[k,0:2]) * scale).reshape(-1)
        self.scores = np.full((anchors.shape[0], 1), -10, dtype=np.float32)
        if found:
            self.scores[k] = 10

    def __call__(self, img):
        self.calls += 1
        self.last_input = img
        return [self.bboxes, self.scores]


class FakeLandmarkModel:
    """Landmark model answering with a fixed set of raw keypoints and score."""
    def __init__(self, raw_keypoints=None, score=0.9, input_size=(224, 224), output_shapes=None):
        self.input_size = input_size
        if raw_keypoints is None:
            raw_keypoints = np.array([[60 + 6*i, 200 - 7*i, 3*i] for i in range(mpu.JOINT_COUNT)], dtype=np.float32)
        self.raw_keypoints = np.asarray(raw_keypoints, dtype=np.float32).reshape(-1)
        self.output_shapes = output_shapes or [(1, self.raw_keypoints.size), (1, 1)]
        self.score = score
        self.calls = 0
        self.last_input = None

    def __call__(self, img):
        self.calls += 1
        self.last_input = img
        return [self.raw_keypoints, np.array([self.score], dtype=np.float32)]


@pytest.fixture
def detection():
    return make_detection()


@pytest.fixture
def frame():
    return np.zeros((240, 320, 3), dtype=np.uint8)
