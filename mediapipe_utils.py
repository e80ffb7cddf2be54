import cv2
import numpy as np
from collections import namedtuple
from enum import Enum
from math import ceil, sqrt, pi, floor, atan2


JOINT_COUNT = 21

# Skeleton edges between the 21 hand landmarks
HAND_CONNECTIONS = [[0,1],[1,2],[2,3],[3,4],
                    [0,5],[5,6],[6,7],[7,8],
                    [5,9],[9,10],[10,11],[11,12],
                    [9,13],[13,14],[14,15],[15,16],
                    [13,17],[0,17],[17,18],[18,19],[19,20]]

# Landmarks matching the 7 palm detection keypoints:
# wrist, index/middle/ring/little finger MCP, thumb CMC and MCP
TO_DETECTION_INDICES = (0, 5, 9, 13, 17, 1, 2)


class Dimension(Enum):
    TWO = 2
    THREE = 3


class Rect(namedtuple('Rect', ['x_center', 'y_center', 'width', 'height'])):
    """
    Axis aligned rectangle, normalized coordinates.
    """
    __slots__ = ()

    @classmethod
    def from_corners(cls, xmin, ymin, xmax, ymax):
        return cls((xmin + xmax) / 2, (ymin + ymax) / 2, xmax - xmin, ymax - ymin)

    @classmethod
    def bounding_box(cls, points):
        points = np.asarray(points)
        xmin, ymin = np.min(points[:,:2], axis=0)
        xmax, ymax = np.max(points[:,:2], axis=0)
        return cls.from_corners(float(xmin), float(ymin), float(xmax), float(ymax))

    @property
    def center(self):
        return np.array([self.x_center, self.y_center])

    @property
    def xmin(self):
        return self.x_center - self.width / 2

    @property
    def ymin(self):
        return self.y_center - self.height / 2

    @property
    def xmax(self):
        return self.x_center + self.width / 2

    @property
    def ymax(self):
        return self.y_center + self.height / 2

    def flip_y(self):
        # Switch between y-down (detection) and y-up (texture) conventions
        return self._replace(y_center=1 - self.y_center)

    def square_long(self):
        size = max(self.width, self.height)
        return self._replace(width=size, height=size)


class DetectionResult:
    """
        Attributes:
        score : detection score
        rect : Rect, normalized [0,1] in the square working image, y axis pointing down
        keypoints : 7x2 array of keypoints [x, y], same space as rect
                0 : wrist
                1 : index finger MCP
                2 : middle finger MCP
                3 : ring finger MCP
                4 : little finger MCP
                5 : thumb CMC
                6 : thumb MCP
        """
    def __init__(self, score, rect, keypoints):
        self.score = score
        self.rect = rect
        self.keypoints = np.asarray(keypoints, dtype=np.float64)

    @property
    def rotation(self):
        # https://github.com/google/mediapipe/blob/master/mediapipe/modules/hand_landmark/palm_detection_detection_to_roi.pbtxt
        # Rotation such that the line connecting the wrist and the middle finger MCP
        # is aligned with the Y-axis of the rectangle (rotation_vector_target_angle_degrees: 90)
        target_angle = pi * 0.5
        x0, y0 = self.keypoints[0]
        x1, y1 = self.keypoints[2]
        return normalize_radians(target_angle - atan2(-(y1 - y0), x1 - x0))

    def __repr__(self):
        return f"DetectionResult(score={self.score:.3f}, rect={tuple(round(v, 4) for v in self.rect)})"


class LandmarkResult:
    """
        Attributes:
        score : hand presence score
        keypoints : 21x3 array, normalized [0,1] in the square working image, y axis pointing up.
                z is 0 with a 2D landmark model.
        """
    def __init__(self, score=0.0, keypoints=None):
        self.score = score
        self.keypoints = np.zeros((JOINT_COUNT, 3)) if keypoints is None else keypoints

    def clone(self):
        return LandmarkResult(self.score, self.keypoints.copy())

    def centroid(self):
        return np.mean(self.keypoints, axis=0)

    def to_detection(self):
        return landmarks_to_detection(self)

    def __repr__(self):
        return f"LandmarkResult(score={self.score:.3f})"


def landmarks_to_detection(result):
    """
    Build the detection used as next frame's ROI source from the hand landmarks.
    The rect is the bounding box of the anchor keypoints, forced to a square
    so its scale stays stable across frames.
    """
    keypoints = result.keypoints[list(TO_DETECTION_INDICES), :2].copy()
    keypoints[:,1] = 1 - keypoints[:,1]
    rect = Rect.bounding_box(keypoints).square_long()
    return DetectionResult(result.score, rect, keypoints)


SSDAnchorOptions = namedtuple('SSDAnchorOptions',[
        'num_layers',
        'min_scale',
        'max_scale',
        'input_size_height',
        'input_size_width',
        'anchor_offset_x',
        'anchor_offset_y',
        'strides',
        'aspect_ratios',
        'reduce_boxes_in_lowest_layer',
        'interpolated_scale_aspect_ratio',
        'fixed_anchor_size'])

def calculate_scale(min_scale, max_scale, stride_index, num_strides):
    if num_strides == 1:
        return (min_scale + max_scale) / 2
    else:
        return min_scale + (max_scale - min_scale) * stride_index / (num_strides - 1)

def generate_anchors(options):
    """
    option : SSDAnchorOptions
    # https://github.com/google/mediapipe/blob/master/mediapipe/calculators/tflite/ssd_anchors_calculator.cc
    Returns an array of anchors [x_center, y_center, w, h]
    """
    anchors = []
    layer_id = 0
    n_strides = len(options.strides)
    while layer_id < n_strides:
        anchor_height = []
        anchor_width = []
        aspect_ratios = []
        scales = []
        # For same strides, we merge the anchors in the same order.
        last_same_stride_layer = layer_id
        while last_same_stride_layer < n_strides and \
                options.strides[last_same_stride_layer] == options.strides[layer_id]:
            scale = calculate_scale(options.min_scale, options.max_scale, last_same_stride_layer, n_strides)
            if last_same_stride_layer == 0 and options.reduce_boxes_in_lowest_layer:
                aspect_ratios += [1.0, 2.0, 0.5]
                scales += [0.1, scale, scale]
            else:
                aspect_ratios += options.aspect_ratios
                scales += [scale] * len(options.aspect_ratios)
                if options.interpolated_scale_aspect_ratio > 0:
                    if last_same_stride_layer == n_strides - 1:
                        scale_next = 1.0
                    else:
                        scale_next = calculate_scale(options.min_scale, options.max_scale, last_same_stride_layer+1, n_strides)
                    scales.append(sqrt(scale * scale_next))
                    aspect_ratios.append(options.interpolated_scale_aspect_ratio)
            last_same_stride_layer += 1

        for i, r in enumerate(aspect_ratios):
            ratio_sqrts = sqrt(r)
            anchor_height.append(scales[i] / ratio_sqrts)
            anchor_width.append(scales[i] * ratio_sqrts)

        stride = options.strides[layer_id]
        feature_map_height = ceil(options.input_size_height / stride)
        feature_map_width = ceil(options.input_size_width / stride)

        for y in range(feature_map_height):
            for x in range(feature_map_width):
                for anchor_id in range(len(anchor_height)):
                    x_center = (x + options.anchor_offset_x) / feature_map_width
                    y_center = (y + options.anchor_offset_y) / feature_map_height
                    if options.fixed_anchor_size:
                        anchors.append([x_center, y_center, 1.0, 1.0])
                    else:
                        anchors.append([x_center, y_center, anchor_width[anchor_id], anchor_height[anchor_id]])

        layer_id = last_same_stride_layer
    return np.array(anchors)

def generate_handtracker_anchors(input_size_width=128, input_size_height=128):
    # https://github.com/google/mediapipe/blob/master/mediapipe/modules/palm_detection/palm_detection_cpu.pbtxt
    # 896 anchors for a 128x128 input, 2016 for 192x192
    anchor_options = SSDAnchorOptions(num_layers=4,
                            min_scale=0.1484375,
                            max_scale=0.75,
                            input_size_height=input_size_height,
                            input_size_width=input_size_width,
                            anchor_offset_x=0.5,
                            anchor_offset_y=0.5,
                            strides=[8, 16, 16, 16],
                            aspect_ratios=[1.0],
                            reduce_boxes_in_lowest_layer=False,
                            interpolated_scale_aspect_ratio=1.0,
                            fixed_anchor_size=True)
    return generate_anchors(anchor_options)

def decode_bboxes(score_thresh, scores, bboxes, anchors, scale=128, best_only=False):
    """
    mediapipe/calculators/tflite/tflite_tensors_to_detections_calculator.cc
    Decodes the palm detection tensors into detections (num_keypoints: 7,
    sigmoid_score: true, score_clipping_thresh: 100, x/y/w/h_scale = input size)

    scores: shape = [number of anchors]
    bboxes: shape = [number of anchors x 18], 18 = 4 (bounding box : (cx,cy,w,h)) + 14 (7 palm keypoints)
    scale: palm detection input size
    Returns a list of DetectionResult, normalized in the palm detection input, y axis pointing down
    """
    detections = []
    scores = np.asarray(scores, dtype=np.float64).reshape(-1)
    bboxes = np.asarray(bboxes, dtype=np.float64).reshape(scores.shape[0], -1)
    scores = 1 / (1 + np.exp(-np.clip(scores, -100, 100)))
    if best_only:
        best_id = np.argmax(scores)
        if scores[best_id] < score_thresh: return detections
        det_scores = scores[best_id:best_id+1]
        det_bboxes = bboxes[best_id:best_id+1]
        det_anchors = anchors[best_id:best_id+1]
    else:
        detection_mask = scores >= score_thresh
        det_scores = scores[detection_mask]
        if det_scores.size == 0: return detections
        det_bboxes = bboxes[detection_mask]
        det_anchors = anchors[detection_mask]

    # x = x * anchor.w / scale + anchor.x_center (same for y and keypoints)
    # w = w * anchor.w / scale (same for h)
    decoded = det_bboxes[:,:18] * np.tile(det_anchors[:,2:4], 9) / scale + np.tile(det_anchors[:,0:2], 9)
    decoded[:,2:4] = decoded[:,2:4] - det_anchors[:,0:2]

    for i in range(decoded.shape[0]):
        cx, cy, w, h = decoded[i,0:4]
        # Decoded detection boxes could have negative values for width/height due
        # to model prediction. Filter out those boxes
        if w < 0 or h < 0: continue
        keypoints = decoded[i,4:18].reshape(7, 2)
        detections.append(DetectionResult(float(det_scores[i]), Rect(float(cx), float(cy), float(w), float(h)), keypoints))
    return detections

def non_max_suppression(detections, nms_thresh):
    # cv2.dnn.NMSBoxes needs boxes = [ [x, y, w, h], ...] with x, y, w, h of type int
    # Coordinates are normalized so we arbitrarily multiply by 1000 and cast to int
    if not detections: return []
    boxes = [[int(v*1000) for v in (d.rect.xmin, d.rect.ymin, d.rect.width, d.rect.height)] for d in detections]
    scores = [d.score for d in detections]
    indices = cv2.dnn.NMSBoxes(boxes, scores, 0, nms_thresh)
    return [detections[i] for i in np.array(indices, dtype=np.int64).reshape(-1)]

def normalize_radians(angle):
    return angle - 2 * pi * floor((angle + pi) / (2 * pi))
