import numpy as np
from math import degrees
import mediapipe_utils as mpu
import transform_utils as tu


DEFAULT_PALM_SHIFT = (0, 0.15)
DEFAULT_PALM_SCALE = (2.9, 2.9)

# Landmark model coordinates are normalized from 0~255 to 0.0~1.0
RAW_SCALE = 1 / 255


class UnsupportedOutputShape(ValueError):
    """The landmark model keypoint output is neither JOINT_COUNT*2 nor JOINT_COUNT*3 values."""


def dimension_from_shape(output_shape):
    """
    output_shape: declared shape of the keypoint output tensor, eg (1, 63).
    Only the last axis is meaningful.
    """
    length = int(np.atleast_1d(output_shape)[-1])
    if length == mpu.JOINT_COUNT * 2:
        return mpu.Dimension.TWO
    if length == mpu.JOINT_COUNT * 3:
        return mpu.Dimension.THREE
    raise UnsupportedOutputShape(f"Unsupported landmark output shape {tuple(np.atleast_1d(output_shape))}, "
                                 f"expected {mpu.JOINT_COUNT*2} or {mpu.JOINT_COUNT*3} values")


class HandLandmarkDecoder:
    """
    Geometry around the hand landmark model:
    - computes the crop matrix of the ROI from a palm detection (or from a detection
      built from the previous frame landmarks),
    - samples the model input through that matrix,
    - decodes the raw model outputs into a LandmarkResult.

    Arguments:
    - output_shape: declared shape of the keypoint output tensor. The dimension (2D or 3D
                    landmarks) is decided here once and for all.
    - input_size: (width, height) of the model input
    - palm_shift: (x, y) offset of the ROI center from the palm center, normalized texture units
    - palm_scale: (x, y) multipliers applied to the palm rectangle long side
    - mirror_horizontal, mirror_vertical: mirror the ROI content
    """
    def __init__(self, output_shape,
                input_size=(224, 224),
                palm_shift=DEFAULT_PALM_SHIFT,
                palm_scale=DEFAULT_PALM_SCALE,
                mirror_horizontal=False,
                mirror_vertical=False):
        self.dim = dimension_from_shape(output_shape)
        self.input_size = tuple(input_size)
        self.palm_shift = tuple(palm_shift)
        self.palm_scale = tuple(palm_scale)
        self.mirror_horizontal = mirror_horizontal
        self.mirror_vertical = mirror_vertical
        self.crop_matrix = None

    def new_result(self):
        return mpu.LandmarkResult(0.0, np.zeros((mpu.JOINT_COUNT, 3)))

    def calc_crop_matrix(self, palm):
        """
        palm: DetectionResult (detection space, y down)
        Returns the matrix mapping texture space (y up) to the model canonical unit square.
        Raises SingularTransform when the palm rect has no size.
        """
        # A clockwise rotation in the y-down detection space is
        # counter-clockwise in the y-up texture space
        return tu.roi_crop_matrix(palm.rect.flip_y(),
                                  -degrees(palm.rotation),
                                  self.palm_shift,
                                  self.palm_scale,
                                  mirror_horizontal=self.mirror_horizontal,
                                  mirror_vertical=self.mirror_vertical)

    def pre_process(self, frame, palm, aspect_mode=tu.AspectMode.FILL):
        """
        Compute and keep the crop matrix for 'palm', then sample the landmark model input from 'frame'.
        Returns the model input image (input_size).
        """
        self.crop_matrix = self.calc_crop_matrix(palm)
        w, h = self.input_size
        aspect_mtx = tu.aspect_scaled_matrix((frame.shape[1], frame.shape[0]), (1, 1), aspect_mode)
        return tu.warp_roi_img(frame, tu.sampler_matrix(aspect_mtx, self.crop_matrix), w, h)

    def decode(self, raw_keypoints, raw_score, result, crop_matrix=None):
        """
        Fill 'result' from the raw model outputs and return it.
        'result' is overwritten on each call: clone it to keep it beyond the current frame.

        raw_keypoints: flat keypoint output (JOINT_COUNT*2 or JOINT_COUNT*3 values)
        raw_score: hand presence output
        crop_matrix: crop matrix used to sample the model input. Default to the one
                    computed by the last pre_process() call.
        """
        if crop_matrix is None:
            crop_matrix = self.crop_matrix
        if crop_matrix is None:
            raise ValueError("No crop matrix: call pre_process() or pass crop_matrix")
        mtx = tu.invert(crop_matrix)
        lm_raw = np.asarray(raw_keypoints, dtype=np.float64).reshape(mpu.JOINT_COUNT, self.dim.value)

        result.score = float(np.asarray(raw_score).reshape(-1)[0])
        norm = np.zeros((mpu.JOINT_COUNT, 3))
        norm[:,0] = lm_raw[:,0] * RAW_SCALE
        # Model outputs are y down, the unit square is y up
        norm[:,1] = 1 - lm_raw[:,1] * RAW_SCALE
        if self.dim == mpu.Dimension.THREE:
            norm[:,2] = lm_raw[:,2] * RAW_SCALE
        result.keypoints[:] = tu.apply_points(mtx, norm)
        return result
