import functions_framework
import orjson

from src.clicks_memory import clicks_memory
from src.clicks_time import clicks_time
from src.common.config import AggregationConfig
from src.common.errors import ClickStatsError, ConfigError, SourceError


STRATEGIES = {
    "memory": clicks_memory,
    "time": clicks_time,
}

JSON_HEADERS = {"Content-Type": "application/json"}
TEXT_HEADERS = {"Content-Type": "text/plain; charset=utf-8"}


def _error_status(error: ClickStatsError) -> int:
    if isinstance(error, ConfigError):
        return 400
    if isinstance(error, SourceError):
        return 404
    return 422


def _error_response(status: int, message: str, **extra):
    body = orjson.dumps({"status": "error", "message": message, **extra})
    return body, status, JSON_HEADERS


@functions_framework.http
def entrypoint(request):
    """
    HTTP entrypoint (Cloud Function).

    Query args: mapping, events (local path or gs://), strategy=memory|time,
    format=json|text, plus the AggregationConfig keys (filter_year,
    sort_descending, top_dates, unknown_sample).
    """
    mapping_path = request.args.get("mapping")
    events_path = request.args.get("events")
    if not mapping_path or not events_path:
        return _error_response(400, "Missing required parameters: mapping, events")

    strategy = request.args.get("strategy", "memory")
    func = STRATEGIES.get(strategy)
    if func is None:
        return _error_response(400, f"Invalid strategy: {strategy}")

    output_format = request.args.get("format", "json")
    if output_format not in ("json", "text"):
        return _error_response(400, f"Invalid format: {output_format}")

    try:
        config = AggregationConfig.from_params(request.args)
        report = func(mapping_path, events_path, config)
    except ClickStatsError as e:
        return _error_response(_error_status(e), e.message, code=e.error_code)

    if output_format == "text":
        return report.render(), 200, TEXT_HEADERS

    body = orjson.dumps(
        {
            "strategy": strategy,
            "mapping": mapping_path,
            "events": events_path,
            "result": report.to_dict(),
        }
    )
    return body, 200, JSON_HEADERS
