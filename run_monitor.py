import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Tuple

import matplotlib

from curvature_monitor.config import MonitorConfig


plt = None  # Will be configured at runtime via _configure_matplotlib.


def _configure_matplotlib(headless: bool) -> None:
    """
    Select an appropriate matplotlib backend before pyplot is imported.
    """
    backend = "Agg" if headless else "QtAgg"
    matplotlib.use(backend)
    global plt  # noqa: PLW0603 - pyplot must be bound once the backend is set
    import matplotlib.pyplot as plt_module  # type: ignore

    plt = plt_module


def _parse_camera(value: str):
    """Camera index when numeric, otherwise a video file path."""
    try:
        return int(value)
    except ValueError:
        return value


def _parse_color(value: str) -> Tuple[int, int, int]:
    parts = [p.strip() for p in value.split(",")]
    if len(parts) != 3:
        raise argparse.ArgumentTypeError(f"Expected R,G,B but got {value!r}")
    try:
        rgb = tuple(int(p) for p in parts)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Colour channels must be integers: {value!r}") from None
    if any(c < 0 or c > 255 for c in rgb):
        raise argparse.ArgumentTypeError(f"Colour channels must be in 0..255: {value!r}")
    return rgb  # type: ignore[return-value]


def build_config(args) -> MonitorConfig:
    if args.config:
        cfg = MonitorConfig.load(Path(args.config).expanduser())
    else:
        cfg = MonitorConfig()

    if args.camera is not None:
        cfg.camera.source = args.camera
    if args.width is not None:
        cfg.camera.frame_width = int(args.width)
    if args.height is not None:
        cfg.camera.frame_height = int(args.height)
    if args.fps is not None:
        cfg.camera.target_fps = max(1.0, float(args.fps))

    if args.tolerance is not None:
        det = cfg.detection
        cfg.detection.hue_tolerance = max(det.hue_tolerance_min, min(det.hue_tolerance_max, int(args.tolerance)))
    if args.mm_per_px is not None:
        cfg.detection.mm_per_px = float(args.mm_per_px)
    if args.min_area is not None:
        cfg.detection.min_area = float(args.min_area)

    if args.max_samples is not None:
        cfg.chart.max_samples = None if args.max_samples <= 0 else int(args.max_samples)

    if args.serial_port:
        cfg.serial.port = args.serial_port
    if args.baudrate is not None:
        cfg.serial.baudrate = int(args.baudrate)

    if args.no_mask:
        cfg.show_mask = False
    if args.export_dir:
        cfg.export_dir = str(Path(args.export_dir).expanduser())
    return cfg


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Live curvature and weight monitor for a colour-tagged object.")

    # Configuration
    parser.add_argument('--config', type=str, help='Load a JSON configuration file before applying overrides')
    parser.add_argument('--dump-config', action='store_true', help='Print the resolved configuration before launching')
    parser.add_argument('--log-level', default='INFO', choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'], help='Logging verbosity')

    # Camera
    parser.add_argument('--camera', type=_parse_camera, help='Camera index or video file path')
    parser.add_argument('--width', type=int, help='Requested capture width')
    parser.add_argument('--height', type=int, help='Requested capture height')
    parser.add_argument('--fps', type=float, help='Target processing rate (frames per second)')

    # Detection
    parser.add_argument('--tolerance', type=int, help='Initial hue tolerance (0-50)')
    parser.add_argument('--mm-per-px', type=float, help='Millimetres per pixel at the object plane')
    parser.add_argument('--min-area', type=float, help='Minimum region area in pixels')
    parser.add_argument('--no-mask', action='store_true', help='Start with the mask overlay hidden')

    # Data
    parser.add_argument('--max-samples', type=int, help='Cap the sample history (<=0 keeps everything)')
    parser.add_argument('--export-dir', type=str, help='Directory for exported CSV files')

    # Serial
    parser.add_argument('--serial-port', type=str, help='Serial port (or pyserial URL) of the load cell')
    parser.add_argument('--baudrate', type=int, help='Serial baud rate')
    parser.add_argument('--list-ports', action='store_true', help='List available serial ports and exit')
    parser.add_argument('--connect-serial', action='store_true', help='Connect to the serial port on start')

    # Headless recording
    parser.add_argument('--headless', action='store_true', help='Run without windows using a non-interactive backend')
    parser.add_argument('--color', type=_parse_color, help='Target colour as R,G,B (required for headless recording)')
    parser.add_argument('--auto-calibrate', type=float, nargs='?', const=1.0, metavar='SECONDS',
                        help='Calibrate automatically after SECONDS (default 1.0) in headless mode')
    parser.add_argument('--duration', type=float, default=10.0, help='Headless recording duration in seconds')
    parser.add_argument('--export', type=str, metavar='PATH', help='CSV path written when a headless run finishes')
    parser.add_argument('--chart-png', type=str, metavar='PATH', help='Save the chart as an image when a headless run finishes')

    return parser.parse_args(argv)


def _run_headless(app, args) -> int:
    app.session.select_color(*args.color)
    print(f"[info] Headless recording for {args.duration:.1f}s ...")
    app.run_headless(args.duration, calibrate_after=args.auto_calibrate)
    if app.serial.connected:
        app.disconnect_serial()

    print(f"[info] Recorded {len(app.session.buffer)} samples; baseline calibrated: {app.session.baseline.calibrated}")
    exit_code = 0
    written = app.export(args.export) if args.export else None
    if args.export and written is None:
        exit_code = 1
    if args.chart_png and app.chart is not None:
        png = app.chart.save(Path(args.chart_png).expanduser())
        print(f"[info] Chart saved to {png}")
    if app.chart is not None:
        app.chart.close()
    return exit_code


def main(argv=None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.list_ports:
        from curvature_monitor.serial_reader import list_ports

        ports = list_ports()
        if not ports:
            print("[info] No serial ports found.")
        for port in ports:
            print(port)
        return 0

    try:
        cfg = build_config(args)
    except (OSError, ValueError) as exc:
        print(f"[error] Invalid configuration: {exc}")
        return 2

    if args.dump_config:
        print(json.dumps(cfg.as_dict(), indent=2, default=str))

    headless_requested = bool(args.headless)
    if headless_requested and args.color is None:
        print("[error] --headless requires --color R,G,B")
        return 2
    _configure_matplotlib(headless_requested)
    if not headless_requested:
        plt.ion()

    from curvature_monitor.app import CurvatureMonitorApp
    from curvature_monitor.chart import CurvatureChart

    app = CurvatureMonitorApp(cfg, chart=CurvatureChart())
    if args.connect_serial:
        app.connect_serial()

    if headless_requested:
        print("[info] Headless mode active; skipping interactive windows.")
        return _run_headless(app, args)

    if args.color is not None:
        app.session.select_color(*args.color)
    plt.show(block=False)
    app.run()
    return 0


if __name__ == "__main__":
    sys.exit(main())
