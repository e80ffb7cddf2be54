import numpy as np
import time
import mediapipe_utils as mpu
import transform_utils as tu
from HandLandmarkDecoder import HandLandmarkDecoder, DEFAULT_PALM_SHIFT, DEFAULT_PALM_SCALE


PD_SCORE_THRESH = 0.8
PD_NMS_THRESH = 0.5
LM_SCORE_THRESH = 0.5

def now():
    return time.perf_counter()

class HandTracker:
    """
    Palm detection + hand landmarks tracker.
    Palm detection runs only when not enough hands are tracked: otherwise the ROI of a hand
    is derived from its landmarks in the previous frame.

    Arguments:
    - palm_model: palm detection model. A callable taking the model input image (RGB/BGR uint8,
                    size palm_model.input_size) and returning [regressors, classificators],
                    regressors of shape (nb_anchors, 18), classificators of shape (nb_anchors,)
                    (extra batch axes are accepted). Attribute 'input_size' = (width, height).
    - landmark_model: hand landmark model. A callable taking the model input image and returning
                    [keypoints, hand_flag]. Attributes 'input_size' = (width, height) and
                    'output_shapes', the declared shapes of its outputs. The keypoint output must have
                    21*2 or 21*3 values, otherwise UnsupportedOutputShape is raised.
    - pd_score_thresh: confidence score to determine whether a palm detection is reliable.
    - pd_nms_thresh: NMS threshold.
    - lm_score_thresh: confidence score to determine whether landmarks prediction is reliable.
    - max_hands: 1 or 2, max number of tracked hands.
    - use_landmark_to_detection: boolean. When True, the landmarks of a frame give the ROIs for the next frame.
                    When False, palm detection runs on every frame.
    - palm_shift, palm_scale: ROI policy applied to the palm (or landmark derived) rectangle.
    - aspect_mode: AspectMode.FILL center crops the frames to a square shape, AspectMode.FIT pads them.
    - stats : boolean, when True, display some statistics when exiting.
    - trace : int, 0 = no trace, otherwise print some debug messages
            if trace & 1, print application level info like number of palm detections
    """
    def __init__(self, palm_model, landmark_model,
                pd_score_thresh=PD_SCORE_THRESH,
                pd_nms_thresh=PD_NMS_THRESH,
                lm_score_thresh=LM_SCORE_THRESH,
                max_hands=1,
                use_landmark_to_detection=True,
                palm_shift=DEFAULT_PALM_SHIFT,
                palm_scale=DEFAULT_PALM_SCALE,
                aspect_mode=tu.AspectMode.FILL,
                stats=False,
                trace=0,
                ):

        assert max_hands in [1, 2], "max_hands must be 1 or 2"
        if not isinstance(aspect_mode, tu.AspectMode):
            try:
                aspect_mode = tu.AspectMode[str(aspect_mode).upper()]
            except KeyError:
                raise ValueError(f"Unknown aspect mode: {aspect_mode}") from None
        self.palm_model = palm_model
        self.landmark_model = landmark_model
        self.pd_score_thresh = pd_score_thresh
        self.pd_nms_thresh = pd_nms_thresh
        self.lm_score_thresh = lm_score_thresh
        self.max_hands = max_hands
        self.use_landmark_to_detection = use_landmark_to_detection
        self.aspect_mode = aspect_mode
        self.stats = stats
        self.trace = trace

        # Fails here if the landmark model output is neither 2D nor 3D
        self.lm_decoder = HandLandmarkDecoder(landmark_model.output_shapes[0],
                                    input_size=landmark_model.input_size,
                                    palm_shift=palm_shift,
                                    palm_scale=palm_scale)
        print(f"Landmark dimension: {self.lm_decoder.dim.name}")
        # Scratch buffer, overwritten by each landmark inference
        self.lm_result = self.lm_decoder.new_result()

        self.pd_input_size = tuple(palm_model.input_size)
        self.anchors = mpu.generate_handtracker_anchors(*self.pd_input_size)
        self.nb_anchors = self.anchors.shape[0]
        print(f"{self.nb_anchors} anchors have been created")

        self.palms = []
        self.hands = []
        self.frame_size = None

        self.nb_frames = 0
        self.nb_frames_pd_inference = 0
        self.nb_frames_no_hand = 0
        self.nb_lm_inferences = 0
        self.nb_failed_lm_inferences = 0
        self.nb_singular_rois = 0
        self.glob_pd_rtrip_time = 0
        self.glob_lm_rtrip_time = 0

    @property
    def aspect_matrix(self):
        """
        Matrix mapping the square working image uv to the source frame uv.
        Results are expressed in the working image: apply this matrix to get them in the frame.
        """
        if self.frame_size is None:
            return np.eye(3)
        return tu.aspect_scaled_matrix(self.frame_size, (1, 1), self.aspect_mode)

    def need_palm_detection(self):
        return len(self.palms) < self.max_hands or not self.use_landmark_to_detection

    def pd_postprocess(self, outputs):
        bboxes = np.asarray(outputs[0]).reshape(self.nb_anchors, -1)
        scores = np.asarray(outputs[1]).reshape(self.nb_anchors)
        palms = mpu.decode_bboxes(self.pd_score_thresh, scores, bboxes, self.anchors,
                    scale=self.pd_input_size[0], best_only=self.max_hands == 1)
        if self.max_hands > 1:
            palms = mpu.non_max_suppression(palms, self.pd_nms_thresh)
        return palms[:self.max_hands]

    def detect_palms(self, frame):
        w, h = self.pd_input_size
        img = tu.warp_roi_img(frame, tu.aspect_scaled_matrix(self.frame_size, (w, h), self.aspect_mode), w, h)
        pd_rtrip_time = now()
        outputs = self.palm_model(img)
        self.glob_pd_rtrip_time += now() - pd_rtrip_time
        self.nb_frames_pd_inference += 1
        return self.pd_postprocess(outputs)

    def infer_landmarks(self, frame, palm):
        """
        Run the landmark model on the ROI of 'palm'.
        Returns the decoder scratch result, or None if the ROI is degenerate.
        """
        try:
            img = self.lm_decoder.pre_process(frame, palm, self.aspect_mode)
        except tu.SingularTransform:
            self.nb_singular_rois += 1
            if self.trace & 1:
                print(f"!!! Skipping hand with degenerate ROI: {palm}")
            return None
        lm_rtrip_time = now()
        outputs = self.landmark_model(img)
        self.glob_lm_rtrip_time += now() - lm_rtrip_time
        self.nb_lm_inferences += 1
        return self.lm_decoder.decode(outputs[0], outputs[1], self.lm_result)

    def next_frame(self, frame):
        """
        frame: source image (H x W x 3)
        Returns the list of LandmarkResult of the hands found in the frame.
        The results belong to the caller.
        """
        self.nb_frames += 1
        self.frame_size = (frame.shape[1], frame.shape[0])

        if self.need_palm_detection():
            self.palms = self.detect_palms(frame)
            if self.trace & 1:
                print(f"Palm detection - nb palms detected: {len(self.palms)}")
            if len(self.palms) == 0:
                self.nb_frames_no_hand += 1
                self.hands = []
                return self.hands

        hands = []
        for palm in self.palms:
            result = self.infer_landmarks(frame, palm)
            if result is None: continue
            if result.score >= self.lm_score_thresh:
                hands.append(result.clone())
            else:
                self.nb_failed_lm_inferences += 1
        self.hands = hands

        if self.trace & 1:
            print(f"Landmarks - nb hands detected : {len(self.hands)}")
            for hand in self.hands:
                x, y, z = hand.centroid()
                print(f"Hand landmark centroid: ({x:.3f}, {y:.3f}, {z:.3f})")
        if len(self.hands) == 0: self.nb_frames_no_hand += 1

        if self.use_landmark_to_detection:
            self.palms = [hand.to_detection() for hand in self.hands]

        return self.hands

    def exit(self):
        # Print some stats
        if self.stats and self.nb_frames:
            nb_frames = self.nb_frames
            print(f"# frames                      : {nb_frames}")
            print(f"# frames w/ no hand           : {self.nb_frames_no_hand} ({100*self.nb_frames_no_hand/nb_frames:.1f}%)")
            print(f"# frames w/ palm detection    : {self.nb_frames_pd_inference} ({100*self.nb_frames_pd_inference/nb_frames:.1f}%)")
            if self.nb_lm_inferences:
                print(f"# lm inferences: {self.nb_lm_inferences} - # failed lm inferences: {self.nb_failed_lm_inferences} ({100*self.nb_failed_lm_inferences/self.nb_lm_inferences:.1f}%)")
            print(f"# hands skipped (degenerate ROI): {self.nb_singular_rois}")
            if self.nb_frames_pd_inference:
                print(f"Palm detection round trip     : {self.glob_pd_rtrip_time/self.nb_frames_pd_inference*1000:.1f} ms")
            if self.nb_lm_inferences:
                print(f"Hand landmark round trip      : {self.glob_lm_rtrip_time/self.nb_lm_inferences*1000:.1f} ms")
