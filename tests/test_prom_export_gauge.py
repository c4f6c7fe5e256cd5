from __future__ import annotations

from coach.metrics import COACH
from coach.prom_export import PromExporter


def test_prom_export_renders_gauge_counter_histogram() -> None:
    exp = PromExporter(ms_buckets=(5, 50))
    exp.inc(COACH["decisions_total"], 3)
    exp.observe(COACH["decision_ms"], 2)
    exp.observe(COACH["decision_ms"], 80)
    exp.set(COACH["fanout_listeners_current"], 4)

    text = exp.render()
    assert "# TYPE coach_decisions_total counter" in text
    assert "coach_decisions_total 3" in text
    assert "# TYPE coach_decision_ms histogram" in text
    assert 'coach_decision_ms_bucket{le="5"} 1' in text
    assert 'coach_decision_ms_bucket{le="50"} 1' in text
    assert 'coach_decision_ms_bucket{le="+Inf"} 2' in text
    assert "coach_decision_ms_sum 82" in text
    assert "# TYPE fanout_listeners_current gauge" in text
    assert "fanout_listeners_current 4" in text


def test_prom_export_prefix() -> None:
    exp = PromExporter(prefix="live")
    exp.inc("sessions.reset_total")
    assert "live_sessions_reset_total 1" in exp.render()
