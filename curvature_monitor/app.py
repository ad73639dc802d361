from __future__ import annotations

import time
from pathlib import Path
from typing import Optional

import serial

from . import events
from .acquisition import AcquisitionLoop, CameraSource, FrameSource
from .calibration import Baseline, CalibrationError
from .config import MonitorConfig
from .overlay import OverlayWindow
from .serial_reader import SerialWeightReader, list_ports
from .session import MonitorSession

try:
    import cv2  # type: ignore
except Exception:  # pragma: no cover
    cv2 = None


GREEN = "\033[92m"
RESET = "\033[0m"


class CurvatureMonitorApp:
    """
    Interactive front end: OpenCV window for the annotated video, Matplotlib
    window for the live chart, keyboard/mouse mapped to session actions.
    """

    def __init__(
        self,
        cfg: MonitorConfig,
        source: Optional[FrameSource] = None,
        chart=None,
        overlay: Optional[OverlayWindow] = None,
    ):
        self.cfg = cfg
        self.session = MonitorSession(cfg)
        self.source = source or CameraSource(
            cfg.camera.source, cfg.camera.frame_width, cfg.camera.frame_height
        )
        self.overlay = overlay or OverlayWindow(show_mask=cfg.show_mask)
        self.chart = chart
        self.loop = AcquisitionLoop(
            self.session, self.source, render_sink=self.overlay, target_fps=cfg.camera.target_fps
        )
        self.serial = SerialWeightReader(cfg.serial, self.session.weight, self.session.events)
        self.color_picker_enabled = False
        self._quit = False
        if chart is not None:
            self.session.attach_chart(chart)
        self._connect_events()

    # ----- status output
    def _connect_events(self):
        ev = self.session.events
        ev.on(events.DETECTION_CHANGED, lambda detected: print(
            f"[object] {'Detected' if detected else 'Not detected'}"))
        ev.on(events.CALIBRATION_CHANGED, self._on_calibration_changed)
        ev.on(events.SERIAL_STATUS, lambda online: print(f"[serial] {'Online' if online else 'Offline'}"))
        ev.on(events.SERIAL_ERROR, lambda exc: print(f"[serial] Error reading serial data: {exc}"))
        ev.on(events.CAMERA_STATUS, lambda online: print(f"[camera] {'Online' if online else 'Offline'}"))

    def _on_calibration_changed(self, baseline: Baseline):
        if baseline.calibrated:
            print(f"[c] Calibrated; baseline at y={baseline.y:.1f}px. Ready to measure curvature.")
        else:
            print("[r] Calibration reset. Calibrate again before measuring.")

    def _announce(self, key: str, label: str, value) -> None:
        print(f"[{key}] {label}: {GREEN}{value}{RESET}")

    def print_hotkey_help(self) -> None:
        BLUE = "\033[34m\033[4m"

        def fmt_state(value):
            return f"{BLUE}{value}{RESET}"

        color = self.session.color
        entries = [
            ("v", "Start / stop camera", "running" if self.loop.running else "stopped"),
            ("p", "Colour picker (then click the object)", color.describe() if color else "none"),
            ("c", "Calibrate baseline", self.session.calibration_state.value),
            ("r", "Reset calibration", None),
            ("x", "Clear chart data", f"{len(self.session.buffer)} samples"),
            ("e", "Export CSV", self.cfg.export_dir),
            ("+/-", "Hue tolerance up / down", self.session.hue_tolerance),
            ("m", "Toggle mask overlay", "on" if self.overlay.show_mask else "off"),
            ("s", "Connect serial", self.cfg.serial.port or "auto"),
            ("d", "Disconnect serial", "online" if self.serial.connected else "offline"),
            ("h", "Show this hotkey list", None),
            ("q", "Quit", None),
        ]
        lines = []
        for key, desc, state in entries:
            if state is not None:
                lines.append(f"  {key:<3} - {desc} (current: {fmt_state(state)})")
            else:
                lines.append(f"  {key:<3} - {desc}")
        print("\nHotkeys:\n" + "\n".join(lines) + "\n")

    # ----- camera
    def start_camera(self) -> bool:
        try:
            self.loop.start()
        except RuntimeError as exc:
            print(f"[v] Error accessing camera: {exc}")
            return False
        return True

    def stop_camera(self) -> None:
        self.loop.stop()
        self.color_picker_enabled = False

    def toggle_camera(self) -> None:
        if self.loop.running:
            self.stop_camera()
        else:
            self.start_camera()

    # ----- colour picking
    def toggle_color_picker(self) -> None:
        if not self.loop.running:
            print("[p] Start the camera first.")
            return
        self.color_picker_enabled = not self.color_picker_enabled
        if self.color_picker_enabled:
            print("[p] Click on the object in the video to pick its colour.")
        else:
            print("[p] Colour picker cancelled.")

    def _on_click(self, x: int, y: int) -> None:
        if not self.color_picker_enabled:
            return
        frame = self.session.latest_frame
        if frame is None:
            print("[p] No frame available yet; try again.")
            return
        sample = self.session.select_color_at(frame, x, y)
        self.color_picker_enabled = False
        self._announce("p", "Selected colour", sample.describe())

    # ----- actions
    def calibrate(self) -> bool:
        try:
            self.session.calibrate()
        except CalibrationError as exc:
            print(f"[c] {exc}")
            return False
        return True

    def reset_calibration(self) -> None:
        self.session.reset_calibration()

    def clear_data(self) -> None:
        self.session.clear_data()
        print("[x] Chart data cleared.")

    def export(self, path: Optional[Path | str] = None) -> Optional[Path]:
        try:
            written = self.session.export_csv(path)
        except ValueError:
            print("[e] No data to export.")
            return None
        except OSError as exc:
            print(f"[e] Export failed: {exc}")
            return None
        self._announce("e", "Exported", written)
        return written

    def change_tolerance(self, delta: int) -> None:
        old = self.session.hue_tolerance
        new = self.session.set_tolerance(old + delta)
        self._announce("+" if delta > 0 else "-", "Hue tolerance", new)

    def toggle_mask(self) -> None:
        self.overlay.show_mask = not self.overlay.show_mask
        self._announce("m", "Mask overlay", "on" if self.overlay.show_mask else "off")

    def connect_serial(self, port: Optional[str] = None) -> bool:
        port = port or self.cfg.serial.port
        if not port:
            ports = list_ports()
            if not ports:
                print("[s] No serial ports found.")
                return False
            port = ports[0]
            print(f"[s] Using first available port {port} (available: {', '.join(ports)})")
        try:
            self.serial.connect(port)
        except (serial.SerialException, ValueError) as exc:
            print(f"[s] Failed to connect to serial port: {exc}")
            return False
        return True

    def disconnect_serial(self) -> None:
        self.serial.disconnect()

    def handle_key(self, key: str) -> None:
        if key in ("q", "\x1b"):
            self._quit = True
        elif key == "v":
            self.toggle_camera()
        elif key == "p":
            self.toggle_color_picker()
        elif key == "c":
            self.calibrate()
        elif key == "r":
            self.reset_calibration()
        elif key == "x":
            self.clear_data()
        elif key == "e":
            self.export()
        elif key in ("+", "="):
            self.change_tolerance(+1)
        elif key in ("-", "_"):
            self.change_tolerance(-1)
        elif key == "m":
            self.toggle_mask()
        elif key == "s":
            self.connect_serial()
        elif key == "d":
            self.disconnect_serial()
        elif key == "h":
            self.print_hotkey_help()

    # ----- main loops
    def run(self) -> None:
        """Interactive loop; OpenCV and Matplotlib windows are driven from this thread."""
        self.overlay.create(on_click=self._on_click)
        self.print_hotkey_help()
        self.start_camera()
        try:
            while not self._quit:
                self.overlay.show()
                if self.chart is not None and not self.chart.refresh():
                    self.chart.fig.canvas.flush_events()
                key = cv2.waitKey(15) & 0xFF
                if key != 0xFF:
                    self.handle_key(chr(key))
        finally:
            self.shutdown()

    def run_headless(
        self,
        duration: float,
        *,
        calibrate_after: Optional[float] = None,
        poll_interval: float = 0.05,
    ) -> None:
        """
        Record for ``duration`` seconds without windows. When ``calibrate_after``
        is set, calibration is attempted once that many seconds have passed and
        retried until it succeeds.
        """
        if not self.start_camera():
            return
        started = time.monotonic()
        calibrated = calibrate_after is None
        try:
            while time.monotonic() - started < duration:
                if not calibrated and time.monotonic() - started >= calibrate_after:
                    calibrated = self.calibrate()
                if self.chart is not None:
                    self.chart.refresh()
                time.sleep(poll_interval)
        finally:
            self.loop.stop()
            self.session.publisher.publish()
            if self.chart is not None:
                self.chart.refresh()

    def shutdown(self) -> None:
        self.loop.stop()
        if self.serial.connected:
            self.serial.disconnect()
        self.overlay.close()
        if self.chart is not None:
            self.chart.close()
