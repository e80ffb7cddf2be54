#!/usr/bin/env python3

import argparse
import cv2
import numpy as np
from pathlib import Path

try:
    from tflite_runtime.interpreter import Interpreter
except ImportError:
    from tensorflow.lite.python.interpreter import Interpreter

from HandTracker import HandTracker, PD_SCORE_THRESH, LM_SCORE_THRESH
from HandTrackerRenderer import HandTrackerRenderer


SCRIPT_DIR = Path(__file__).resolve().parent
PALM_DETECTION_MODEL = str(SCRIPT_DIR / "models/palm_detection.tflite")
LANDMARK_MODEL = str(SCRIPT_DIR / "models/hand_landmark.tflite")


class TFLiteModel:
    """
    TensorFlow Lite interpreter exposing the model interface expected by HandTracker.
    Input images are converted to RGB float32, (pixel - input_mean) / input_std
    """
    def __init__(self, model_path, input_mean=0.0, input_std=255.0, num_threads=2):
        if not Path(model_path).exists():
            raise FileNotFoundError(f"Model file not found: {model_path}")
        self.interpreter = Interpreter(model_path=model_path, num_threads=num_threads)
        self.interpreter.allocate_tensors()
        self.input_details = self.interpreter.get_input_details()
        self.output_details = self.interpreter.get_output_details()
        _, h, w, _ = self.input_details[0]['shape']
        self.input_size = (int(w), int(h))
        self.output_shapes = [tuple(d['shape']) for d in self.output_details]
        self.input_mean = input_mean
        self.input_std = input_std
        print(f"Model loaded: {model_path} - input size: {self.input_size} - outputs: {self.output_shapes}")

    def __call__(self, img):
        rgb = cv2.cvtColor(img, cv2.COLOR_BGR2RGB)
        tensor = (np.float32(rgb) - self.input_mean) / self.input_std
        self.interpreter.set_tensor(self.input_details[0]['index'], np.expand_dims(tensor, axis=0))
        self.interpreter.invoke()
        return [self.interpreter.get_tensor(d['index'])[0] for d in self.output_details]


class PalmTFLiteModel(TFLiteModel):
    def __call__(self, img):
        # regressors (nb_anchors x 18) first, then classificators (nb_anchors x 1)
        return sorted(super().__call__(img), key=lambda o: o.shape[-1], reverse=True)


parser = argparse.ArgumentParser()
parser_tracker = parser.add_argument_group("Tracker arguments")
parser_tracker.add_argument('-i', '--input', type=str, default="0",
                    help="Path to video or image file to use as input, or webcam id (default=%(default)s)")
parser_tracker.add_argument("--pd_model", type=str, default=PALM_DETECTION_MODEL,
                    help="Path to a tflite file for palm detection model")
parser_tracker.add_argument("--lm_model", type=str, default=LANDMARK_MODEL,
                    help="Path to a tflite file for hand landmark model")
parser_tracker.add_argument('--pd_score_thresh', type=float, default=PD_SCORE_THRESH,
                    help="Palm detection score threshold (default=%(default)s)")
parser_tracker.add_argument('--lm_score_thresh', type=float, default=LM_SCORE_THRESH,
                    help="Landmark score threshold (default=%(default)s)")
parser_tracker.add_argument('-n', '--max_hands', type=int, choices=[1,2], default=1,
                    help="Max number of tracked hands (default=%(default)i)")
parser_tracker.add_argument('--no_landmark_to_detection', action="store_true",
                    help="Run palm detection on every frame instead of deriving the ROI from previous landmarks")
parser_tracker.add_argument('-c', '--crop', action="store_true",
                    help="Center crop frames to a square shape (default: pad)")
parser_tracker.add_argument('-t', '--trace', type=int, nargs="?", const=1, default=0,
                    help="Print some debug infos. The type of info depends on the optional argument.")
parser_renderer = parser.add_argument_group("Renderer arguments")
parser_renderer.add_argument('-o', '--output',
                    help="Path to output video file")
args = parser.parse_args()

tracker = HandTracker(
        palm_model=PalmTFLiteModel(args.pd_model),
        landmark_model=TFLiteModel(args.lm_model),
        pd_score_thresh=args.pd_score_thresh,
        lm_score_thresh=args.lm_score_thresh,
        max_hands=args.max_hands,
        use_landmark_to_detection=not args.no_landmark_to_detection,
        aspect_mode="fill" if args.crop else "fit",
        stats=True,
        trace=args.trace,
        )

if args.input.endswith('.jpg') or args.input.endswith('.png'):
    img = cv2.imread(args.input)
    cap = None
    video_fps = 25
else:
    cap = cv2.VideoCapture(int(args.input) if args.input.isdigit() else args.input)
    video_fps = int(cap.get(cv2.CAP_PROP_FPS)) or 25

renderer = HandTrackerRenderer(
        tracker=tracker,
        output=args.output,
        video_fps=video_fps)

while True:
    if cap is None:
        frame = img.copy()
    else:
        ok, frame = cap.read()
        if not ok: break
    hands = tracker.next_frame(frame)
    frame = renderer.draw(frame, hands)
    key = renderer.waitKey(delay=1)
    if key == 27 or key == ord('q'):
        break
renderer.exit()
tracker.exit()
if cap is not None:
    cap.release()
