import cv2
import numpy as np
from enum import Enum
from math import sin, cos, radians


# All matrices are 3x3 homogeneous 2D affine transforms.
# uv spaces (texture, canonical unit square) have their y axis pointing up.

SINGULAR_EPSILON = 1e-9


class SingularTransform(ValueError):
    """A transform that must be inverted has a (near) zero determinant,
    typically because the ROI rectangle has no size."""


class AspectMode(Enum):
    NONE = 0
    FIT = 1     # Whole source visible, padded
    FILL = 2    # Source center-cropped


def translate_matrix(tx, ty):
    return np.array([[1, 0, tx],
                     [0, 1, ty],
                     [0, 0, 1]], dtype=np.float64)

def rotate_matrix(degree):
    # Counter-clockwise in a y-up space
    c, s = cos(radians(degree)), sin(radians(degree))
    return np.array([[c, -s, 0],
                     [s, c, 0],
                     [0, 0, 1]], dtype=np.float64)

def scale_matrix(sx, sy):
    return np.array([[sx, 0, 0],
                     [0, sy, 0],
                     [0, 0, 1]], dtype=np.float64)

PUSH_MATRIX = translate_matrix(0.5, 0.5)
POP_MATRIX = translate_matrix(-0.5, -0.5)

def compose(translation, rotation_degree, scale, mirror_horizontal=False, mirror_vertical=False):
    """
    Returns T(translation) . R(rotation_degree) . S(scale)
    A mirror flag negates the corresponding scale factor.
    """
    sx, sy = scale
    if mirror_horizontal: sx = -sx
    if mirror_vertical: sy = -sy
    return translate_matrix(*translation) @ rotate_matrix(rotation_degree) @ scale_matrix(sx, sy)

def invert(mtx):
    det = np.linalg.det(mtx)
    if abs(det) < SINGULAR_EPSILON:
        raise SingularTransform(f"Transform is not invertible (det={det:.3g})")
    return np.linalg.inv(mtx)

def apply(mtx, point):
    """
    Map a 2D or 3D point. w is implicitly 1, z is passed through unchanged.
    """
    x, y = point[0], point[1]
    px = mtx[0,0] * x + mtx[0,1] * y + mtx[0,2]
    py = mtx[1,0] * x + mtx[1,1] * y + mtx[1,2]
    if len(point) > 2:
        return np.array([px, py, point[2]])
    return np.array([px, py])

def apply_points(mtx, points):
    """
    points: array of shape (N, 2) or (N, 3). The z column, if any, is copied as is.
    """
    points = np.asarray(points, dtype=np.float64)
    mapped = points.copy()
    mapped[:,:2] = points[:,:2] @ mtx[:2,:2].T + mtx[:2,2]
    return mapped

def roi_region_matrix(rect, rotation_degree, shift, scale, square_long=True,
                      mirror_horizontal=False, mirror_vertical=False):
    """
    Matrix mapping the canonical unit square onto the ROI in texture space.

    rect : Rect in texture space (y up)
    rotation_degree : counter-clockwise rotation of the ROI
    shift : (x, y) offset of the ROI center in normalized texture units,
            rotated together with the ROI
    scale : (x, y) multipliers applied to the rect size.
            When square_long is True, the long side of the rect is used for both axes.
    """
    if square_long:
        long_side = max(rect.width, rect.height)
        size = (long_side * scale[0], long_side * scale[1])
    else:
        size = (rect.width * scale[0], rect.height * scale[1])
    shift_x, shift_y = apply(rotate_matrix(rotation_degree), shift)
    center = (rect.x_center + shift_x, rect.y_center + shift_y)
    return compose(center, rotation_degree, size, mirror_horizontal, mirror_vertical) @ POP_MATRIX

def roi_crop_matrix(rect, rotation_degree, shift, scale, square_long=True,
                    mirror_horizontal=False, mirror_vertical=False):
    """
    Inverse of roi_region_matrix: maps texture space to the canonical unit square.
    Raises SingularTransform for a zero-size rect.
    """
    return invert(roi_region_matrix(rect, rotation_degree, shift, scale, square_long,
                                    mirror_horizontal, mirror_vertical))

def roi_corners(crop_matrix):
    """
    4 corners of the ROI in texture space, starting from the bottom left corner of
    the unit square and going counter-clockwise.
    """
    unit_corners = np.array([[0, 0], [1, 0], [1, 1], [0, 1]], dtype=np.float64)
    return apply_points(invert(crop_matrix), unit_corners)

def aspect_scale(src_aspect, dst_aspect, mode):
    if mode == AspectMode.NONE or src_aspect == dst_aspect:
        return 1.0, 1.0
    src_wider = src_aspect > dst_aspect
    if mode == AspectMode.FIT:
        return (1.0, src_aspect / dst_aspect) if src_wider else (dst_aspect / src_aspect, 1.0)
    if mode == AspectMode.FILL:
        return (dst_aspect / src_aspect, 1.0) if src_wider else (1.0, src_aspect / dst_aspect)
    raise ValueError(f"Unknown aspect mode: {mode}")

def aspect_scaled_matrix(src_size, dst_size, mode):
    """
    src_size, dst_size : (width, height)
    Returns the matrix mapping destination uv to source uv so that the source
    keeps its aspect ratio once sampled into the destination.
    """
    sx, sy = aspect_scale(src_size[0] / src_size[1], dst_size[0] / dst_size[1], mode)
    return PUSH_MATRIX @ scale_matrix(sx, sy) @ POP_MATRIX

def sampler_matrix(aspect_mtx, crop_matrix):
    # Aspect scale is applied after the crop inverse
    return aspect_mtx @ invert(crop_matrix)

def uv_to_pixel_matrix(w, h):
    # uv (y up) -> pixel coordinates (y down)
    return np.array([[w, 0, 0],
                     [0, -h, h],
                     [0, 0, 1]], dtype=np.float64)

def warp_roi_img(img, uv_matrix, w, h):
    """
    Sample a w x h image from img.
    uv_matrix maps the uv coordinates of the output image to the uv coordinates of img.
    Pixels outside img are black.
    """
    img_h, img_w = img.shape[:2]
    mat = uv_to_pixel_matrix(img_w, img_h) @ uv_matrix @ invert(uv_to_pixel_matrix(w, h))
    return cv2.warpAffine(img, mat[:2].astype(np.float32), (w, h),
                flags=cv2.INTER_LINEAR | cv2.WARP_INVERSE_MAP, borderMode=cv2.BORDER_CONSTANT)
