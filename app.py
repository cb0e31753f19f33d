"""
Forecast Lead-Time Flask App
JSON API behind the forecast dashboard and the lead-time comparison report.
"""

from flask import Flask, jsonify, request
from datetime import datetime, timezone
import logging
import math
import os

from dotenv import load_dotenv

from built_up import DEFAULT_EPOCHS, compare_built_up, point_cell
from config import create_source, load_config
from errors import FetchTransientError, ForecastToolsError, MissingConfigError
from forecast_run import (
    DEFAULT_RUN_TIME,
    RUN_TIMES,
    handle_chart_click,
    hour_snapshot,
    load_forecast_run,
)
from lead_time import run_comparison

load_dotenv()

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app = Flask(__name__)


def get_source(config=None):
    """Forecast source for a request; tests inject one via app.config['FORECAST_SOURCE']."""
    source = app.config.get("FORECAST_SOURCE")
    if source is not None:
        return source
    if config is None:
        config = load_config(require_dates=False)
    return create_source(config)


def _error_response(e: Exception):
    if isinstance(e, FetchTransientError):
        status = 502
    elif isinstance(e, ForecastToolsError):
        status = 400
    else:
        status = 500
    return jsonify({"success": False, "error": str(e)}), status


def _float_arg(name: str, default=None):
    raw = request.args.get(name)
    if raw in (None, ""):
        if default is None:
            raise MissingConfigError(f"Missing parameter: {name}")
        return default
    try:
        value = float(raw)
    except ValueError:
        raise MissingConfigError(f"Invalid number for {name}: {raw}")
    if not math.isfinite(value):
        raise MissingConfigError(f"Invalid number for {name}: {raw}")
    return value


@app.route('/api/run-times')
def api_run_times():
    """Run times offered by the dashboard."""
    return jsonify({
        "success": True,
        "run_times": [{"label": label, "value": value} for value, label in RUN_TIMES.items()],
        "default": DEFAULT_RUN_TIME,
    })


@app.route('/api/forecast-run')
def api_forecast_run():
    """Load a forecast run: hours found, slider bounds, region-mean chart."""
    date_str = request.args.get('date')
    time_str = request.args.get('time', DEFAULT_RUN_TIME)
    with_chart = request.args.get('chart', 'true').lower() != 'false'

    try:
        source = get_source()
        view = load_forecast_run(source, date_str, time_str, with_chart=with_chart)
        payload = {"success": True, "run": view.to_dict()}
        if view.found:
            payload["snapshot"] = hour_snapshot(source, view, view.slider.value).to_dict()
        return jsonify(payload)
    except Exception as e:
        logger.error(f"Error loading forecast run: {e}")
        return _error_response(e)


@app.route('/api/forecast-run/hour')
def api_forecast_hour():
    """
    City values for one hour of a run.

    Pass ``hour`` for a slider selection or ``click`` for a chart x value;
    a click is rounded and clamped to the slider bounds.
    """
    date_str = request.args.get('date')
    time_str = request.args.get('time', DEFAULT_RUN_TIME)

    try:
        source = get_source()
        view = load_forecast_run(source, date_str, time_str, with_chart=False)

        if 'click' in request.args:
            snapshot = handle_chart_click(source, view, _float_arg('click'))
        else:
            snapshot = hour_snapshot(source, view, int(_float_arg('hour')))

        if snapshot is None:
            return jsonify({"success": True, "snapshot": None, "status": "No hour selected"})
        return jsonify({
            "success": True,
            "snapshot": snapshot.to_dict(),
            "status": f"Map updated to hour: {snapshot.hour}",
        })
    except Exception as e:
        logger.error(f"Error loading forecast hour: {e}")
        return _error_response(e)


@app.route('/api/lead-time-comparison')
def api_lead_time_comparison():
    """
    Compare forecasts for the same validity dates issued at different lead times.

    Query: start, end (YYYY-MM-DD), leads ("24,48"), run_hour, first, second.
    """
    overrides = {
        "start_date": request.args.get('start'),
        "end_date": request.args.get('end'),
        "lead_hours": request.args.get('leads'),
        "run_hour": request.args.get('run_hour'),
    }

    try:
        config = load_config(overrides=overrides)
        result = run_comparison(
            get_source(config),
            config,
            first=request.args.get('first'),
            second=request.args.get('second'),
        )
        return jsonify({
            "success": True,
            "comparison": result.to_dict(),
            "generated_at": datetime.now(timezone.utc).isoformat(),
        })
    except Exception as e:
        logger.error(f"Error calculating lead-time comparison: {e}")
        return _error_response(e)


@app.route('/api/built-up')
def api_built_up():
    """Built-up surface percentage of a square cell for two GHSL epochs."""
    try:
        cell = point_cell(_float_arg('lat'), _float_arg('lon'), _float_arg('size_km', 70.0))
        epochs = request.args.get('epochs')
        years = [int(y) for y in epochs.split(",")] if epochs else list(DEFAULT_EPOCHS)
        comparison = compare_built_up(cell, years, project=os.getenv("EE_PROJECT_ID"))
        return jsonify({"success": True, "built_up": comparison.to_dict()})
    except ValueError as e:
        logger.error(f"Error computing built-up statistics: {e}")
        return _error_response(e if isinstance(e, ForecastToolsError) else MissingConfigError(str(e)))
    except Exception as e:
        logger.error(f"Error computing built-up statistics: {e}")
        return _error_response(e)


if __name__ == '__main__':
    app.run(debug=False, port=int(os.getenv("PORT", 5001)))
