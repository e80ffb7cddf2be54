import cv2
import numpy as np
import mediapipe_utils as mpu
import transform_utils as tu


class HandTrackerRenderer:
    def __init__(self,
                tracker,
                output=None,
                video_fps=25):

        self.tracker = tracker

        # Rendering flags
        self.show_palms = True
        self.show_rot_rect = False
        self.show_landmarks = True
        self.show_scores = False

        self.output_path = output
        self.video_fps = video_fps
        self.output = None

    def uv2abs(self, points):
        # Working image uv (y up) -> pixels in the source frame
        h, w = self.frame.shape[:2]
        mtx = tu.uv_to_pixel_matrix(w, h) @ self.tracker.aspect_matrix
        return tu.apply_points(mtx, np.asarray(points)[:,:2]).astype(np.int32)

    def det2abs(self, points):
        # Detection space (y down) -> pixels in the source frame
        points = np.array(points, dtype=np.float64)[:,:2]
        points[:,1] = 1 - points[:,1]
        return self.uv2abs(points)

    def draw_palm(self, palm):
        rect = palm.rect
        corners = self.det2abs([[rect.xmin, rect.ymin], [rect.xmax, rect.ymax]])
        cv2.rectangle(self.frame, tuple(int(v) for v in corners[0]), tuple(int(v) for v in corners[1]), (0,255,0), 2)
        for i, (x, y) in enumerate(self.det2abs(palm.keypoints)):
            cv2.circle(self.frame, (int(x), int(y)), 5, (0,0,255), -1)
            cv2.putText(self.frame, str(i), (int(x), int(y)+12), cv2.FONT_HERSHEY_PLAIN, 1, (0,255,0), 1)
        if self.show_scores:
            cv2.putText(self.frame, f"Palm score: {palm.score:.2f}",
                    (int(corners[0][0]), int(corners[1][1])+20),
                    cv2.FONT_HERSHEY_PLAIN, 1.5, (255,255,0), 2)
        if self.show_rot_rect:
            try:
                crop_matrix = self.tracker.lm_decoder.calc_crop_matrix(palm)
            except tu.SingularTransform:
                return
            cv2.polylines(self.frame, [self.uv2abs(tu.roi_corners(crop_matrix))], True, (0,255,255), 2, cv2.LINE_AA)

    def draw_hand(self, hand, color):
        landmarks = self.uv2abs(hand.keypoints)
        if self.show_landmarks:
            lines = [np.array([landmarks[point] for point in line]) for line in mpu.HAND_CONNECTIONS]
            cv2.polylines(self.frame, lines, False, color, 2, cv2.LINE_AA)
            for x, y in landmarks:
                cv2.circle(self.frame, (int(x), int(y)), 4, (0,128,255), -1)
        if self.show_scores:
            cv2.putText(self.frame, f"Landmark score: {hand.score:.2f}",
                    (int(landmarks[0][0])-90, int(np.max(landmarks[:,1]))+40),
                    cv2.FONT_HERSHEY_PLAIN, 1.5, (255,255,0), 2)

    def draw(self, frame, hands):
        self.frame = frame
        if self.show_palms:
            for palm in self.tracker.palms:
                self.draw_palm(palm)
        for i, hand in enumerate(hands):
            self.draw_hand(hand, (255,0,0) if i % 2 == 0 else (0,0,255))
        return self.frame

    def exit(self):
        if self.output:
            self.output.release()

    def waitKey(self, delay=1):
        cv2.imshow("Hand tracking", self.frame)
        if self.output_path:
            if self.output is None:
                fourcc = cv2.VideoWriter_fourcc(*"MJPG")
                h, w = self.frame.shape[:2]
                self.output = cv2.VideoWriter(self.output_path, fourcc, self.video_fps, (w, h))
            self.output.write(self.frame)
        key = cv2.waitKey(delay)
        if key == 32:
            # Pause on space bar
            key = cv2.waitKey(0)
            if key == ord('s'):
                print("Snapshot saved in snapshot.jpg")
                cv2.imwrite("snapshot.jpg", self.frame)
        elif key == ord('1'):
            self.show_palms = not self.show_palms
        elif key == ord('2'):
            self.show_rot_rect = not self.show_rot_rect
        elif key == ord('3'):
            self.show_landmarks = not self.show_landmarks
        elif key == ord('4'):
            self.show_scores = not self.show_scores
        return key
