"""
=============================================================================
METER TRACKER - MAIN FLASK APPLICATION
=============================================================================

REST API around the meter_core calculations:
- Meters, readings (manual entry or CSV import) and pricing contracts
- Consumption deltas, averages and yearly projections
- Interval cost estimates and contract coverage gaps
- Forward projections and household wide yearly cost aggregates

Storage is DynamoDB when USE_DYNAMODB=true, local JSON Lines files otherwise.

How to run:
    python -m backend.app

Then visit: http://127.0.0.1:5000/health
=============================================================================
"""

import uuid

from botocore.exceptions import BotoCoreError, ClientError
from flask import Flask, Response, current_app, jsonify, request
from loguru import logger

from backend import config
from backend.logging_config import configure_logging
from backend.lib.local_store import LocalStore
from backend.lib.meter_core.aggregates import calculate_aggregates
from backend.lib.meter_core.estimator import price_interval, round_cost
from backend.lib.meter_core.gaps import find_contract_gaps
from backend.lib.meter_core.io import parse_csv_string, readings_to_csv
from backend.lib.meter_core.models import Contract, Meter, MeterType, Reading, parse_datetime
from backend.lib.meter_core.overlap import check_contract_overlap
from backend.lib.meter_core.processor import ConsumptionAnalyzer
from backend.lib.meter_core.projection import calculate_projection


# =============================================================================
# STORAGE SELECTION
# =============================================================================

def build_store():
    """
    DynamoDB if enabled and reachable, otherwise the local file store.
    """
    if config.USE_DYNAMODB:
        try:
            from backend.lib.dynamodb_service import DynamoDBService
            service = DynamoDBService()
            if service.create_table_if_not_exists():
                logger.info("DynamoDB storage enabled")
                return service
            logger.warning("DynamoDB table unavailable. Using local storage.")
        except (BotoCoreError, ClientError) as e:
            # Missing credentials or region end up here
            logger.warning("DynamoDB initialization failed: {}. Using local storage.", e)
    return LocalStore(config.DATA_DIR)


def _store():
    return current_app.config["STORE"]


# =============================================================================
# REQUEST HELPERS
# =============================================================================

def _error(message: str, status: int = 400):
    return jsonify({"error": message}), status


def _storage_error(what: str):
    # The store already logged the underlying AWS error
    return _error(f"Could not save {what}. Storage unavailable.", 503)


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValueError("JSON object body required")
    return data


def _meter_or_none():
    """Looks up the meter named by ?meter_id=; returns (meter, error_response)."""
    meter_id = request.args.get("meter_id")
    if not meter_id:
        return None, _error("meter_id required")
    meter = _store().get_meter(meter_id)
    if meter is None:
        return None, _error(f"Unknown meter: {meter_id}", 404)
    return meter, None


# =============================================================================
# API ROUTES - BASIC ENDPOINTS
# =============================================================================

def health():
    return jsonify({"status": "ok", "storage": _store().name})


def list_meters():
    return jsonify({"meters": [m.to_dict() for m in _store().get_meters()]})


def create_meter():
    data = _json_body()
    data.setdefault("id", uuid.uuid4().hex)
    meter = Meter.from_dict(data)
    if not _store().put_meter(meter):
        return _storage_error(f"meter {meter.id}")
    logger.info("Created meter {} ({})", meter.id, meter.type.value)
    return jsonify(meter.to_dict()), 201


def delete_meter(meter_id):
    if not _store().delete_meter(meter_id):
        return _error(f"Unknown meter: {meter_id}", 404)
    return jsonify({"message": "Deleted"})


# =============================================================================
# API ROUTES - READINGS
# =============================================================================

def get_readings():
    """
    Readings of one meter, newest first, each with the consumption since the
    previous reading, plus the meter's averages.

    Example Request:
        GET /readings?meter_id=house-power
    """
    meter, error = _meter_or_none()
    if error:
        return error
    analyzer = ConsumptionAnalyzer(_store().get_readings(meter.id))
    return jsonify({
        "meter_id": meter.id,
        "readings": [r.to_dict() for r in analyzer.deltas()],
        "stats": analyzer.stats().to_dict(),
    })


def add_reading():
    reading = Reading.from_dict(_json_body())
    if _store().get_meter(reading.meter_id) is None:
        return _error(f"Unknown meter: {reading.meter_id}", 404)
    if not _store().put_reading(reading):
        return _storage_error("reading")
    return jsonify(reading.to_dict()), 201


def delete_reading():
    meter_id = request.args.get("meter_id")
    date = request.args.get("date")
    if not meter_id or not date:
        return _error("meter_id and date required")
    if not _store().delete_reading(meter_id, parse_datetime(date)):
        return _error("Reading not found", 404)
    return jsonify({"message": "Deleted"})


def upload():
    """
    Handle CSV imports.

    Expected CSV format:
        meter_id,date,value
        house-power,2025-11-01T00:00:00Z,6575.4

    Meters that do not exist yet are created with the type given in the
    optional form field meter_type (default: power).

    HTTP Status Codes:
        202: Accepted - Upload successful
        400: Bad Request - No file or invalid CSV
        503: Service Unavailable - Some readings could not be stored
    """
    if "file" not in request.files:
        return _error("No file uploaded")

    file = request.files["file"]
    readings = parse_csv_string(file.read().decode("utf-8"))

    meter_type = MeterType(request.form.get("meter_type", MeterType.POWER.value))
    created = []
    for meter_id in sorted({r.meter_id for r in readings}):
        if _store().get_meter(meter_id) is None:
            if not _store().put_meter(Meter(id=meter_id, name=meter_id, type=meter_type)):
                return _storage_error(f"meter {meter_id}")
            created.append(meter_id)

    stored = _store().put_readings_batch(readings)
    body = {
        "upload_id": file.filename,
        "processed_count": len(readings),
        "stored_count": stored,
        "created_meters": created,
    }
    if stored < len(readings):
        logger.error("Stored only {} of {} readings from {}", stored, len(readings), file.filename)
        body["error"] = f"Only {stored} of {len(readings)} readings were saved. Storage unavailable."
        return jsonify(body), 503

    logger.info("Imported {} readings from {} ({} new meters)", stored, file.filename, len(created))
    return jsonify(body), 202


def export():
    meter, error = _meter_or_none()
    if error:
        return error
    csv_text = readings_to_csv(_store().get_readings(meter.id))
    return Response(
        csv_text,
        mimetype="text/csv",
        headers={"Content-Disposition": f"attachment; filename={meter.id}.csv"},
    )


# =============================================================================
# API ROUTES - ANALYSIS
# =============================================================================

def stats():
    meter, error = _meter_or_none()
    if error:
        return error
    result = ConsumptionAnalyzer(_store().get_readings(meter.id)).stats()
    return jsonify({"meter_id": meter.id, "unit": meter.unit, **result.to_dict()})


def monthly():
    meter, error = _meter_or_none()
    if error:
        return error
    data = ConsumptionAnalyzer(_store().get_readings(meter.id)).monthly_consumption()
    return jsonify({
        "meter_id": meter.id,
        "data": [{"period": k, "consumption": v} for k, v in data.items()],
    })


def estimate():
    """
    Cost of every interval between two consecutive readings, priced against
    the contracts in force. Consumption in periods without a contract is
    reported as unbilled.
    """
    meter, error = _meter_or_none()
    if error:
        return error

    contracts = _store().get_contracts(meter.id)
    with_deltas = list(reversed(ConsumptionAnalyzer(_store().get_readings(meter.id)).deltas()))

    intervals = []
    total_cost = 0.0
    total_unbilled = 0.0
    for prev, curr in zip(with_deltas, with_deltas[1:]):
        breakdown = price_interval(prev.date, curr.date, curr.delta, contracts)
        total_cost += breakdown.cost
        total_unbilled += breakdown.unbilled_consumption
        intervals.append({
            "start": prev.date.isoformat(),
            "end": curr.date.isoformat(),
            "consumption": curr.delta,
            "cost": round_cost(breakdown.cost),
            "unbilled_consumption": breakdown.unbilled_consumption,
        })

    return jsonify({
        "meter_id": meter.id,
        "intervals": intervals,
        "estimated_cost": round_cost(total_cost),
        "unbilled_consumption": total_unbilled,
    })


def projection():
    meter, error = _meter_or_none()
    if error:
        return error
    try:
        days = int(request.args.get("days", config.PROJECTION_DAYS))
    except ValueError:
        return _error("days must be an integer")
    if days < 0:
        return _error("days must be >= 0")

    points = calculate_projection(_store().get_readings(meter.id), days)
    return jsonify({"meter_id": meter.id, "days": days, "projection": [p.to_dict() for p in points]})


def gaps():
    meter, error = _meter_or_none()
    if error:
        return error
    found = find_contract_gaps(_store().get_readings(meter.id), _store().get_contracts(meter.id))
    return jsonify({"meter_id": meter.id, "gaps": [g.to_dict() for g in found]})


def aggregates():
    store = _store()
    result = calculate_aggregates(store.get_meters(), store.get_readings(), store.get_contracts())
    return jsonify(result.to_dict())


# =============================================================================
# API ROUTES - CONTRACTS
# =============================================================================

def list_contracts():
    meter_id = request.args.get("meter_id")
    contracts = sorted(_store().get_contracts(meter_id), key=lambda c: c.start_date, reverse=True)
    return jsonify({"contracts": [c.to_dict() for c in contracts]})


def _save_contract(contract: Contract, exclude_id=None):
    """
    Rejects the write with 400 when the contract overlaps another one of the
    same meter, and with 503 when the store could not save it.
    """
    existing = _store().get_contracts(contract.meter_id)
    conflict = check_contract_overlap(contract.period, existing, exclude_id=exclude_id)
    if conflict:
        logger.warning("Rejected contract {} for meter {}: {}", contract.id, contract.meter_id, conflict.message)
        return _error(conflict.message)
    if not _store().put_contract(contract):
        return _storage_error(f"contract {contract.id}")
    return None


def create_contract():
    data = _json_body()
    data["id"] = uuid.uuid4().hex
    contract = Contract.from_dict(data)
    if _store().get_meter(contract.meter_id) is None:
        return _error(f"Unknown meter: {contract.meter_id}", 404)
    error = _save_contract(contract)
    if error:
        return error
    logger.info("Created contract {} for meter {}", contract.id, contract.meter_id)
    return jsonify(contract.to_dict()), 201


def update_contract(contract_id):
    current = _store().get_contract(contract_id)
    if current is None:
        return _error(f"Unknown contract: {contract_id}", 404)
    # id and meter stay fixed; everything else may change
    merged = {**current.to_dict(), **_json_body(), "id": current.id, "meter_id": current.meter_id}
    contract = Contract.from_dict(merged)
    error = _save_contract(contract, exclude_id=contract_id)
    if error:
        return error
    return jsonify(contract.to_dict())


def delete_contract(contract_id):
    if not _store().delete_contract(contract_id):
        return _error(f"Unknown contract: {contract_id}", 404)
    return jsonify({"message": "Deleted"})


# =============================================================================
# API ROUTES - DYNAMODB ENDPOINTS
# =============================================================================

def dynamodb_status():
    store = _store()
    return jsonify({
        "dynamodb_enabled": store.name == "dynamodb",
        "table_name": getattr(store, "table_name", None),
    })


# =============================================================================
# FLASK APPLICATION INITIALIZATION
# =============================================================================

def handle_value_error(e):
    # Malformed payloads, dates or CSV files
    logger.warning("Bad request on {}: {}", request.path, e)
    return _error(str(e))


def create_app(store=None) -> Flask:
    configure_logging(config.LOG_LEVEL, config.LOG_JSON)

    app = Flask(__name__)
    app.config["STORE"] = store if store is not None else build_store()
    app.register_error_handler(ValueError, handle_value_error)

    app.add_url_rule("/health", view_func=health, methods=["GET"])
    app.add_url_rule("/meters", view_func=list_meters, methods=["GET"])
    app.add_url_rule("/meters", view_func=create_meter, methods=["POST"])
    app.add_url_rule("/meters/<meter_id>", view_func=delete_meter, methods=["DELETE"])
    app.add_url_rule("/readings", view_func=get_readings, methods=["GET"])
    app.add_url_rule("/readings", view_func=add_reading, methods=["POST"])
    app.add_url_rule("/readings", view_func=delete_reading, methods=["DELETE"])
    app.add_url_rule("/upload", view_func=upload, methods=["POST"])
    app.add_url_rule("/export", view_func=export, methods=["GET"])
    app.add_url_rule("/stats", view_func=stats, methods=["GET"])
    app.add_url_rule("/monthly", view_func=monthly, methods=["GET"])
    app.add_url_rule("/estimate", view_func=estimate, methods=["GET"])
    app.add_url_rule("/projection", view_func=projection, methods=["GET"])
    app.add_url_rule("/gaps", view_func=gaps, methods=["GET"])
    app.add_url_rule("/aggregates", view_func=aggregates, methods=["GET"])
    app.add_url_rule("/contracts", view_func=list_contracts, methods=["GET"])
    app.add_url_rule("/contracts", view_func=create_contract, methods=["POST"])
    app.add_url_rule("/contracts/<contract_id>", view_func=update_contract, methods=["PUT", "PATCH"])
    app.add_url_rule("/contracts/<contract_id>", view_func=delete_contract, methods=["DELETE"])
    app.add_url_rule("/dynamodb/status", view_func=dynamodb_status, methods=["GET"])
    return app


app = create_app()


# =============================================================================
# RUN THE SERVER
# =============================================================================

if __name__ == "__main__":
    # debug=True enables auto-reload and the interactive debugger; never in production
    app.run(debug=True)
