"""
Cost Sentinel - statistical cost anomaly detection and forecasting.

A lightweight engine for:
- Ensemble anomaly detection (z-score, IQR, regression, seasonal)
- Multi-model cost forecasting with confidence intervals
- Anomaly reports and forecast insights
- Slack alerts for critical anomalies and forecast changes
"""

__version__ = "0.1.0"
