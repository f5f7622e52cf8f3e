"""Исключения HikerAPI-клиента."""


class ScraperError(Exception):
    """Общая ошибка скрапинга."""


class PrivateAccountError(ScraperError):
    """Аккаунт приватный: скрапинг невозможен."""


class InsufficientBalanceError(ScraperError):
    """Недостаточно средств на HikerAPI: ретрай бесполезен."""


class HikerAPIError(ScraperError):
    """Ошибка HTTP от HikerAPI (4xx/5xx)."""

    def __init__(self, status_code: int, detail: str = "") -> None:
        self.status_code = status_code
        super().__init__(f"HikerAPI HTTP {status_code}: {detail}")


class HikerRateLimitError(HikerAPIError):
    """HTTP 429. retry_after: секунды из заголовка Retry-After, если есть."""

    def __init__(self, retry_after: float | None = None) -> None:
        self.retry_after = retry_after
        super().__init__(429, "rate limit exceeded")


class ChallengeRequiredError(ScraperError):
    """Instagram требует challenge/checkpoint для продолжения."""

    def __init__(self, challenge_type: str) -> None:
        self.challenge_type = challenge_type
        super().__init__(f"Challenge required: {challenge_type}")
