from .registry import CameraDevice, DeviceRegistry, DevicesChangedCallback

__all__ = ["CameraDevice", "DeviceRegistry", "DevicesChangedCallback"]
