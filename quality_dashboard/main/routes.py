from flask import Blueprint, abort, current_app, jsonify, request

from config.source_families import DEFECT_ROLE, UNIT_ROLE

from quality_dashboard.aggregates import (
    DEFAULT_MODEL,
    NO_DATA_LABEL,
    daily_counts,
    defect_counts,
    defect_counts_recent,
    defect_rows,
    distinct_car_types,
    shift_counts,
    summary_counts,
    top_defects,
)
from quality_dashboard.db import (
    fetch_event_records,
    fetch_table_schemas,
    get_local_timezone,
    local_today,
)
from quality_dashboard.pipeline import (
    ALL_CAR_TYPES,
    dedup_latest,
    filter_by_car_type,
    filter_today,
    normalize_car_type,
)
from quality_dashboard.records import local_now

main_bp = Blueprint('main', __name__)

RESULT_OK = 'OK'
RESULT_NG = 'NG'


def _request_filters() -> tuple[str, bool]:
    """Return the normalised ``carType`` and the today-only flag (``any=1``)."""

    car_type = normalize_car_type(request.args.get('carType'))
    today_only = request.args.get('any') == '1'
    return car_type, today_only


def _unit_records(car_type: str, today_only: bool) -> list:
    """Return deduplicated pass/fail records narrowed by the request filters.

    Deduplication runs over the full merged set; the vehicle-type and
    today-only filters apply to the surviving records.
    """

    records, error = fetch_event_records(UNIT_ROLE)
    if error:
        abort(500, description=error)

    rows = filter_by_car_type(dedup_latest(records), car_type)
    if today_only:
        rows = filter_today(rows, local_today())
    return rows


def _defect_records(car_type: str, today_only: bool) -> list:
    """Return point-level defect rows; a unit may carry several, so no dedup."""

    pushdown = None if car_type == ALL_CAR_TYPES else {'car_type': car_type}
    records, error = fetch_event_records(DEFECT_ROLE, pushdown=pushdown)
    if error:
        abort(500, description=error)

    rows = defect_rows(filter_by_car_type(records, car_type))
    if today_only:
        rows = filter_today(rows, local_today())
    return rows


def build_statistic_payload(car_type: str = ALL_CAR_TYPES, today_only: bool = False) -> dict:
    car_type = normalize_car_type(car_type)
    rows = _unit_records(car_type, today_only)
    payload = summary_counts(
        rows,
        local_today(),
        car_type,
        default_model=current_app.config.get('DEFAULT_MODEL') or DEFAULT_MODEL,
    )
    payload['carType'] = car_type
    return payload


def build_bar_payload(result: str, car_type: str = ALL_CAR_TYPES, today_only: bool = False) -> list:
    rows = _unit_records(normalize_car_type(car_type), today_only)
    return daily_counts(rows, result, local_today())


def build_bar_shift_payload(
    result: str, car_type: str = ALL_CAR_TYPES, today_only: bool = False
) -> list:
    rows = _unit_records(normalize_car_type(car_type), today_only)
    return shift_counts(rows, result, local_today())


def build_pie_payload(window: str, car_type: str = ALL_CAR_TYPES, today_only: bool = False) -> list:
    """Defect frequencies over all time (``all``) or the last seven data-dates (``week``)."""

    rows = _defect_records(normalize_car_type(car_type), today_only)
    if window == 'week':
        return defect_counts_recent(
            rows,
            no_data_label=current_app.config.get('NO_DATA_LABEL') or NO_DATA_LABEL,
        )
    return defect_counts(rows)


def build_line_payload(car_type: str = ALL_CAR_TYPES, today_only: bool = False) -> list:
    rows = _defect_records(normalize_car_type(car_type), today_only)
    return top_defects(rows)


def build_car_types_payload() -> dict:
    records, error = fetch_event_records((UNIT_ROLE, DEFECT_ROLE))
    if error:
        abort(500, description=error)

    ordered = distinct_car_types(records)
    return {
        'code': 200,
        'data': {'carTypes': ordered, 'count': len(ordered)},
        'message': 'ok',
    }


def build_tables_payload() -> dict:
    schemas, error = fetch_table_schemas()
    if error:
        abort(500, description=error)
    return {'code': 200, 'data': schemas, 'error': ''}


@main_bp.route('/api/statistic', methods=['GET'])
def statistic():
    car_type, today_only = _request_filters()
    return jsonify(build_statistic_payload(car_type, today_only))


@main_bp.route('/api/barOK', methods=['GET'])
def bar_ok():
    car_type, today_only = _request_filters()
    return jsonify(build_bar_payload(RESULT_OK, car_type, today_only))


@main_bp.route('/api/barNG', methods=['GET'])
def bar_ng():
    car_type, today_only = _request_filters()
    return jsonify(build_bar_payload(RESULT_NG, car_type, today_only))


@main_bp.route('/api/barShiftOK', methods=['GET'])
def bar_shift_ok():
    car_type, today_only = _request_filters()
    return jsonify(build_bar_shift_payload(RESULT_OK, car_type, today_only))


@main_bp.route('/api/barShiftNG', methods=['GET'])
def bar_shift_ng():
    car_type, today_only = _request_filters()
    return jsonify(build_bar_shift_payload(RESULT_NG, car_type, today_only))


@main_bp.route('/api/pieALL', methods=['GET'])
def pie_all():
    car_type, today_only = _request_filters()
    return jsonify(build_pie_payload('all', car_type, today_only))


@main_bp.route('/api/pieWEEK', methods=['GET'])
def pie_week():
    car_type, today_only = _request_filters()
    return jsonify(build_pie_payload('week', car_type, today_only))


@main_bp.route('/api/line', methods=['GET'])
def line():
    """Top five defects by number of distinct units affected."""
    car_type, today_only = _request_filters()
    return jsonify(build_line_payload(car_type, today_only))


@main_bp.route('/api/car-types', methods=['GET'])
def car_types():
    return jsonify(build_car_types_payload())


@main_bp.route('/api/tables', methods=['GET'])
def tables():
    return jsonify(build_tables_payload())


@main_bp.route('/api/current-time', methods=['GET'])
def current_time():
    now = local_now(get_local_timezone())
    return jsonify({
        'code': 200,
        'data': {
            'currentTime': now.isoformat(timespec='seconds'),
            'date': now.date().isoformat(),
        },
    })


@main_bp.app_errorhandler(500)
def handle_internal_error(exc):
    description = getattr(exc, 'description', None) or 'Internal server error'
    current_app.logger.error("Request %s failed: %s", request.path, description)
    return jsonify({'error': description}), 500
