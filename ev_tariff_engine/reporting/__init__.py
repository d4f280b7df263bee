from .format import render_invoice, render_multiplier_trace, render_pricing_report, render_sessions_table

__all__ = ["render_invoice", "render_multiplier_trace", "render_pricing_report", "render_sessions_table"]
