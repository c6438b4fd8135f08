"""rollcast: rolling-origin evaluation and stacking of time series forecasters."""

__version__ = "0.1.0"
