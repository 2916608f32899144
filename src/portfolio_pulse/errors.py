"""Exceptions raised by the portfolio pipeline."""


class PortfolioError(Exception):
    """Base class for portfolio errors surfaced to the user."""


class ProviderError(PortfolioError):
    """A single quote provider attempt failed or returned unusable data."""


class AllSourcesFailed(PortfolioError):
    """Every price source for a symbol failed."""

    def __init__(self, symbol: str, errors: list[tuple[str, Exception]]) -> None:
        self.symbol = symbol
        self.errors = errors
        details = "; ".join(f"{name}: {err}" for name, err in errors) or "no sources"
        super().__init__(f"All price sources failed for {symbol} ({details})")


class FormatNotRecognized(PortfolioError):
    """No usable header row was found in an import file."""


class EmptyImport(PortfolioError):
    """The import file was recognized but produced no holdings."""
