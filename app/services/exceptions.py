class InsightError(Exception):
    """Base class for read-state errors surfaced to callers."""


class InsightNotFoundError(InsightError):
    def __init__(self, insight_id: int):
        self.insight_id = insight_id
        super().__init__("Notification not found")


class InsightAccessDeniedError(InsightError):
    def __init__(self, insight_id: int):
        self.insight_id = insight_id
        super().__init__("Unauthorized")
