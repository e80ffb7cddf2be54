import numpy as np
import pytest

import mediapipe_utils as mpu
import transform_utils as tu
from HandLandmarkDecoder import HandLandmarkDecoder, UnsupportedOutputShape, dimension_from_shape, RAW_SCALE
from conftest import make_detection


def encode(points, crop_matrix, dim):
    """Raw model output that decodes to 'points' (texture space)."""
    unit = tu.apply_points(crop_matrix, points)
    raw = np.zeros((len(points), dim.value))
    raw[:,0] = unit[:,0] / RAW_SCALE
    raw[:,1] = (1 - unit[:,1]) / RAW_SCALE
    if dim == mpu.Dimension.THREE:
        raw[:,2] = unit[:,2] / RAW_SCALE
    return raw.reshape(-1)


@pytest.mark.parametrize("shape, dim", [
    ((1, 42), mpu.Dimension.TWO),
    ((1, 63), mpu.Dimension.THREE),
    ((63,), mpu.Dimension.THREE),
    (42, mpu.Dimension.TWO),
])
def test_dimension_from_shape(shape, dim):
    assert dimension_from_shape(shape) == dim
    assert HandLandmarkDecoder(shape).dim == dim


@pytest.mark.parametrize("shape", [(1, 64), (1, 21), (1, 84)])
def test_unsupported_output_shape(shape):
    with pytest.raises(UnsupportedOutputShape):
        HandLandmarkDecoder(shape)


def test_crop_matrix_from_upright_detection(detection):
    decoder = HandLandmarkDecoder((1, 63))
    region = tu.invert(decoder.calc_crop_matrix(detection))
    np.testing.assert_allclose(tu.apply(region, (0.5, 0.5)), (0.5, 0.65), atol=1e-9)
    width = np.linalg.norm(tu.apply(region, (1, 0.5)) - tu.apply(region, (0, 0.5)))
    height = np.linalg.norm(tu.apply(region, (0.5, 1)) - tu.apply(region, (0.5, 0)))
    assert width == pytest.approx(0.87)
    assert height == pytest.approx(0.87)


def test_crop_matrix_follows_palm_orientation():
    # Middle finger MCP on the right of the wrist: fingers point right,
    # the ROI shift moves the center to the right
    keypoints = np.full((7, 2), 0.5)
    keypoints[0] = (0.4, 0.5)
    keypoints[2] = (0.6, 0.5)
    detection = mpu.DetectionResult(0.9, mpu.Rect(0.5, 0.5, 0.3, 0.3), keypoints)
    region = tu.invert(HandLandmarkDecoder((1, 42)).calc_crop_matrix(detection))
    np.testing.assert_allclose(tu.apply(region, (0.5, 0.5)), (0.65, 0.5), atol=1e-9)
    # Top of the unit square (finger tips side) is on the right
    assert tu.apply(region, (0.5, 1))[0] > 0.9


def test_crop_matrix_custom_policy(detection):
    decoder = HandLandmarkDecoder((1, 63), palm_shift=(0, 0), palm_scale=(1, 1))
    region = tu.invert(decoder.calc_crop_matrix(detection))
    np.testing.assert_allclose(tu.roi_corners(decoder.calc_crop_matrix(detection)),
                               [[0.35, 0.35], [0.65, 0.35], [0.65, 0.65], [0.35, 0.65]], atol=1e-9)
    np.testing.assert_allclose(tu.apply(region, (0.5, 0.5)), (0.5, 0.5), atol=1e-9)


def test_crop_matrix_degenerate_detection():
    detection = mpu.DetectionResult(0.9, mpu.Rect(0.5, 0.5, 0, 0), np.full((7, 2), 0.5))
    with pytest.raises(tu.SingularTransform):
        HandLandmarkDecoder((1, 63)).calc_crop_matrix(detection)


@pytest.mark.parametrize("dim", [mpu.Dimension.TWO, mpu.Dimension.THREE])
def test_decode_round_trip(detection, dim):
    decoder = HandLandmarkDecoder((1, mpu.JOINT_COUNT * dim.value))
    crop = decoder.calc_crop_matrix(detection)
    rng = np.random.default_rng(7)
    points = np.zeros((mpu.JOINT_COUNT, 3))
    points[:,:2] = rng.uniform(0.2, 0.8, (mpu.JOINT_COUNT, 2))
    if dim == mpu.Dimension.THREE:
        points[:,2] = rng.uniform(-0.1, 0.1, mpu.JOINT_COUNT)

    result = decoder.decode(encode(points, crop, dim), np.array([0.93]), decoder.new_result(), crop)
    assert result.score == pytest.approx(0.93)
    np.testing.assert_allclose(result.keypoints, points, atol=1e-6)


def test_decode_zeros(detection):
    decoder = HandLandmarkDecoder((1, 63))
    crop = decoder.calc_crop_matrix(detection)
    result = decoder.decode(np.zeros(63), [0.0], decoder.new_result(), crop)
    assert result.score == 0.0
    expected = tu.apply(tu.invert(crop), np.array([0.0, 1.0, 0.0]))
    for keypoint in result.keypoints:
        np.testing.assert_allclose(keypoint, expected)


def test_decode_2d_has_zero_z(detection):
    decoder = HandLandmarkDecoder((1, 42))
    crop = decoder.calc_crop_matrix(detection)
    result = decoder.decode(np.full(42, 100.0), [0.5], decoder.new_result(), crop)
    np.testing.assert_allclose(result.keypoints[:,2], 0)


def test_decode_overwrites_scratch_result(detection):
    decoder = HandLandmarkDecoder((1, 63))
    crop = decoder.calc_crop_matrix(detection)
    scratch = decoder.new_result()
    first = decoder.decode(np.full(63, 10.0), [0.9], scratch, crop)
    kept = first.clone()
    second = decoder.decode(np.full(63, 200.0), [0.6], scratch, crop)
    assert first is scratch and second is scratch
    assert scratch.score == pytest.approx(0.6)
    assert kept.score == pytest.approx(0.9)
    assert not np.allclose(kept.keypoints, scratch.keypoints)


def test_decode_without_crop_matrix():
    decoder = HandLandmarkDecoder((1, 63))
    with pytest.raises(ValueError, match="No crop matrix"):
        decoder.decode(np.zeros(63), [0.9], decoder.new_result())


def test_pre_process_keeps_crop_matrix(detection, frame):
    decoder = HandLandmarkDecoder((1, 63), input_size=(224, 192))
    img = decoder.pre_process(frame, detection)
    assert img.shape == (192, 224, 3)
    np.testing.assert_allclose(decoder.crop_matrix, decoder.calc_crop_matrix(detection))
    # decode() defaults to the crop matrix of the last pre_process()
    result = decoder.decode(np.zeros(63), [0.0], decoder.new_result())
    np.testing.assert_allclose(result.keypoints[0], tu.apply(tu.invert(decoder.crop_matrix), np.array([0.0, 1.0, 0.0])))


def test_pre_process_samples_the_roi():
    # White square on the ROI center, black elsewhere
    frame = np.zeros((200, 200, 3), dtype=np.uint8)
    frame[60:80, 90:110] = 255
    detection = make_detection(0.5, 0.35, 0.1)
    decoder = HandLandmarkDecoder((1, 63), input_size=(64, 64), palm_shift=(0, 0), palm_scale=(2, 2))
    img = decoder.pre_process(frame, detection)
    assert img[32, 32].tolist() == [255, 255, 255]
    assert img[2, 2].tolist() == [0, 0, 0]


def test_pre_process_degenerate_palm(frame):
    detection = mpu.DetectionResult(0.9, mpu.Rect(0.5, 0.5, 0, 0), np.full((7, 2), 0.5))
    with pytest.raises(tu.SingularTransform):
        HandLandmarkDecoder((1, 63)).pre_process(frame, detection)
