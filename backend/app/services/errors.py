class RecommendationError(Exception):
    error_code = "recommendation_failed"


class InvalidSourcesError(RecommendationError):
    error_code = "invalid_sources"


class MalformedHistoryError(RecommendationError):
    error_code = "invalid_history_file"


class InvalidPageTokenError(RecommendationError):
    error_code = "invalid_page_token"

    def __init__(self, message: str = "Invalid pageToken. Start again without one."):
        super().__init__(message)


class NoRecommendationsError(RecommendationError):
    error_code = "no_recommendations"

    def __init__(self, message: str = "No recommendations found. Try different videos."):
        super().__init__(message)


class MalformedDurationError(ValueError):
    def __init__(self, duration: str):
        super().__init__(f"Unrecognised duration: {duration!r}")
        self.duration = duration
