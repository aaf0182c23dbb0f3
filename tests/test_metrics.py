from services import metrics


def test_counters_accumulate_per_label_set():
    metrics.increment_payout_request("reserved")
    metrics.increment_payout_request("reserved")
    metrics.increment_payout_request("duplicate_payout")

    assert metrics.get_counter("payout_requests_total", {"result": "reserved"}) == 2
    assert metrics.get_counter("payout_requests_total", {"result": "duplicate_payout"}) == 1
    assert metrics.get_counter("payout_requests_total", {"result": "replayed"}) == 0


def test_render_prometheus_text_format():
    metrics.increment_http_requests("/health", 200)
    metrics.increment_payout_terminal("FAILED")

    body = metrics.render_prometheus()
    assert body.endswith("\n")
    assert "# TYPE http_requests_total counter" in body
    assert 'http_requests_total{route="/health",status="200"} 1' in body
    assert 'payout_terminal_total{status="FAILED"} 1' in body


def test_render_is_empty_after_reset():
    metrics.increment_reconcile_correction("completed")
    metrics.reset()
    assert metrics.render_prometheus() == ""


def test_request_outcomes_are_counted(engine, creator):
    engine.orchestrator.request_payout(creator, ["st-1"])
    engine.orchestrator.request_payout(creator, ["st-1"])

    assert metrics.get_counter("payout_requests_total", {"result": "reserved"}) == 1
    assert metrics.get_counter("payout_requests_total", {"result": "replayed"}) == 1
    assert metrics.get_counter("payout_attempts_total", {"outcome": "success"}) == 1
