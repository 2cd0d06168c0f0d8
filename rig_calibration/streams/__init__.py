from .controller import SlotState, StreamCallback, StreamController, StreamHandle

__all__ = ["SlotState", "StreamCallback", "StreamController", "StreamHandle"]
