from inference_gateway.application.api.models.analysis import (
    AnalyzeRequestModel,
    AnalyzeResponseModel,
    ErrorBody,
    ErrorResponse,
)

__all__ = ["AnalyzeRequestModel", "AnalyzeResponseModel", "ErrorBody", "ErrorResponse"]
