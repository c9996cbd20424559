from .contracts import MediaEvent, MediaFlowState, MediaServerPort
from .pipeline import (
    MediaElement,
    MediaPipeline,
    MediaPipelineFactory,
    PipelineState,
    PlayerEndpoint,
    WebRtcEndpoint,
)

__all__ = [
    "MediaEvent",
    "MediaFlowState",
    "MediaServerPort",
    "MediaElement",
    "MediaPipeline",
    "MediaPipelineFactory",
    "PipelineState",
    "PlayerEndpoint",
    "WebRtcEndpoint",
]
