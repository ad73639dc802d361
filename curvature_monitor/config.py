from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Mapping, MutableMapping, Optional, Union


@dataclass
class DetectionConfig:
    # Colour tolerance
    hue_tolerance: int = 15
    hue_tolerance_min: int = 0
    hue_tolerance_max: int = 50
    sv_tolerance_cap: int = 50

    # Mask cleanup (elliptical kernel, open then close)
    morph_kernel_size: int = 5

    # Region selection
    min_area: float = 1000.0

    # Curvature geometry
    top_band_fraction: float = 0.3     # top 30% of the bounding box is the measured edge
    min_edge_points: int = 3
    baseline_inset_fraction: float = 0.1
    mm_per_px: float = 0.3             # setup dependent; re-measure per rig


@dataclass
class CameraConfig:
    source: Union[int, str] = 0        # camera index or video file path
    frame_width: int = 640
    frame_height: int = 480
    target_fps: float = 60.0


@dataclass
class ChartConfig:
    publish_interval_ms: int = 100
    refresh_interval_ms: int = 500
    max_samples: Optional[int] = None  # None keeps every sample
    time_decimals: int = 1


@dataclass
class SerialConfig:
    port: Optional[str] = None
    baudrate: int = 115200
    bytesize: int = 8
    parity: str = "N"
    stopbits: int = 1
    read_timeout: float = 0.1
    encoding: str = "utf-8"


_GROUPS = {
    "detection": DetectionConfig,
    "camera": CameraConfig,
    "chart": ChartConfig,
    "serial": SerialConfig,
}


@dataclass
class MonitorConfig:
    detection: DetectionConfig = field(default_factory=DetectionConfig)
    camera: CameraConfig = field(default_factory=CameraConfig)
    chart: ChartConfig = field(default_factory=ChartConfig)
    serial: SerialConfig = field(default_factory=SerialConfig)

    # Display / recording
    show_mask: bool = True
    record_uncalibrated: bool = True
    export_dir: str = "."

    def as_dict(self) -> MutableMapping[str, object]:
        return asdict(self)

    def save_json(self, path: Path | str) -> None:
        """
        Persist the configuration to JSON.
        """
        path_obj = Path(path)
        path_obj.parent.mkdir(parents=True, exist_ok=True)
        path_obj.write_text(json.dumps(self.as_dict(), indent=2, sort_keys=True), encoding="utf-8")

    @classmethod
    def load(cls, path: Path | str) -> "MonitorConfig":
        """
        Load a configuration from a JSON file. Missing keys keep their defaults.
        """
        payload = json.loads(Path(path).read_text(encoding="utf-8"))
        if not isinstance(payload, Mapping):
            raise ValueError(f"Expected a JSON object in {path}, got {type(payload).__name__}")
        return cls.from_dict(payload)

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> "MonitorConfig":
        cfg = cls()
        scalar_names = {f.name for f in fields(cls)} - set(_GROUPS)
        for key, value in data.items():
            if key in _GROUPS:
                if not isinstance(value, Mapping):
                    raise ValueError(f"Config section '{key}' must be a mapping")
                setattr(cfg, key, _build_group(_GROUPS[key], value))
            elif key in scalar_names:
                setattr(cfg, key, value)
            else:
                raise ValueError(f"Unknown config key: {key!r}")
        return cfg


def _build_group(group_cls, values: Mapping[str, object]):
    known = {f.name for f in fields(group_cls)}
    unknown = set(values) - known
    if unknown:
        raise ValueError(f"Unknown {group_cls.__name__} keys: {sorted(unknown)}")
    return group_cls(**dict(values))
