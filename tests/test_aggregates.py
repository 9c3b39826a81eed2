from datetime import date, timedelta, timezone

from quality_dashboard.aggregates import (
    daily_counts,
    defect_counts,
    defect_counts_recent,
    format_thousands,
    shift_counts,
    shift_for,
    summary_counts,
    top_defects,
)
from quality_dashboard.records import EventRecord, parse_timestamp

TODAY = date(2024, 7, 20)


def _record(unit_id, when=None, *, result="OK", car_type="V254", errtype=None):
    return EventRecord(
        unit_id=unit_id,
        datetime=when,
        timestamp=parse_timestamp(when, timezone.utc),
        car_type=car_type,
        result=result,
        errtype=errtype,
    )


def _at(day_offset, hour=10):
    day = TODAY - timedelta(days=day_offset)
    return f"{day.isoformat()} {hour:02d}:00:00"


def test_daily_counts_keep_seven_most_recent_dates_newest_first():
    rows = []
    for offset in range(10):
        for n in range(offset + 1):
            rows.append(_record(f"U{offset}-{n}", _at(offset)))
    rows.append(_record("NG-1", _at(0), result="NG"))

    series = daily_counts(rows, "OK", TODAY)

    names = [item["name"] for item in series]
    assert len(series) == 7
    assert names == sorted(names, reverse=True)
    assert len(set(names)) == len(names)
    assert series[0] == {"name": TODAY.isoformat(), "value": 1}
    assert series[-1] == {"name": (TODAY - timedelta(days=6)).isoformat(), "value": 7}


def test_daily_counts_uses_data_dates_not_calendar_days():
    rows = [_record("U1", _at(30)), _record("U2", _at(45))]

    series = daily_counts(rows, "OK", TODAY)

    assert [item["name"] for item in series] == [
        (TODAY - timedelta(days=30)).isoformat(),
        (TODAY - timedelta(days=45)).isoformat(),
    ]


def test_daily_counts_missing_timestamp_falls_into_today():
    series = daily_counts([_record("U1", None), _record("U2", "bad")], "OK", TODAY)

    assert series == [{"name": TODAY.isoformat(), "value": 2}]


def test_daily_counts_placeholder_when_empty():
    assert daily_counts([], "NG", TODAY) == [{"name": TODAY.isoformat(), "value": 0}]
    assert daily_counts([_record("U1", _at(1))], "NG", TODAY) == [
        {"name": TODAY.isoformat(), "value": 0}
    ]


def test_shift_boundaries():
    assert shift_for(parse_timestamp("2024-07-01 07:00:00", timezone.utc)) == "day"
    assert shift_for(parse_timestamp("2024-07-01 18:59:59", timezone.utc)) == "day"
    assert shift_for(parse_timestamp("2024-07-01 19:00:00", timezone.utc)) == "night"
    assert shift_for(parse_timestamp("2024-07-01 06:59:59", timezone.utc)) == "night"
    assert shift_for(None) == "night"


def test_shift_counts_split_sums_to_daily_total():
    rows = [
        _record("A", _at(0, 8)),
        _record("B", _at(0, 20)),
        _record("C", _at(0, 3)),
        _record("D", _at(1, 12)),
        _record("E", _at(2, 22)),
        _record("F", _at(2, 9), result="NG"),
    ]

    split = shift_counts(rows, "OK", TODAY)
    daily = {item["name"]: item["value"] for item in daily_counts(rows, "OK", TODAY)}

    assert [item["name"] for item in split] == [
        (TODAY - timedelta(days=2)).isoformat(),
        (TODAY - timedelta(days=1)).isoformat(),
        TODAY.isoformat(),
    ]
    for item in split:
        assert item["value1"] + item["value2"] == daily[item["name"]]
    assert split[-1] == {"name": TODAY.isoformat(), "value1": 1, "value2": 2}
    assert split[0] == {
        "name": (TODAY - timedelta(days=2)).isoformat(),
        "value1": 0,
        "value2": 1,
    }


def test_shift_counts_limits_union_to_seven_dates_ascending():
    rows = [_record(f"D{n}", _at(n, 9)) for n in range(0, 14, 2)]
    rows += [_record(f"N{n}", _at(n, 21)) for n in range(1, 14, 2)]

    split = shift_counts(rows, "OK", TODAY)

    names = [item["name"] for item in split]
    assert len(split) == 7
    assert names == sorted(names)
    assert names[-1] == TODAY.isoformat()


def test_shift_counts_placeholder_when_empty():
    assert shift_counts([], "OK", TODAY) == [
        {"name": TODAY.isoformat(), "value1": 0, "value2": 0}
    ]


def test_defect_counts_all_time_in_first_seen_order():
    rows = [
        _record("U1", _at(40), result="NG", errtype="Scratch"),
        _record("U1", _at(40), result="NG", errtype="Dent"),
        _record("U2", _at(0), result="NG", errtype="Scratch"),
        _record("U3", _at(0), result="OK"),
    ]

    assert defect_counts(rows) == [
        {"name": "Scratch", "value": 2},
        {"name": "Dent", "value": 1},
    ]
    assert defect_counts([]) == []


def test_defect_counts_recent_uses_last_seven_data_dates():
    rows = [_record(f"U{n}", _at(n * 3), errtype="Gap") for n in range(9)]
    rows.append(_record("X", _at(30), errtype="Burr"))
    rows.append(_record("Y", None, errtype="Burr"))

    result = defect_counts_recent(rows)

    assert result == [{"id": 1, "name": "Gap", "value": 7}]


def test_defect_counts_recent_assigns_sequential_ids():
    rows = [
        _record("U1", _at(0), errtype="Gap"),
        _record("U2", _at(1), errtype="Burr"),
        _record("U3", _at(2), errtype="Gap"),
    ]

    assert defect_counts_recent(rows) == [
        {"id": 1, "name": "Gap", "value": 2},
        {"id": 2, "name": "Burr", "value": 1},
    ]


def test_defect_counts_recent_placeholder_when_no_defect_rows():
    rows = [_record("U1", _at(0), errtype=None)]

    assert defect_counts_recent(rows, no_data_label="no data") == [
        {"id": 1, "name": "no data", "value": 0}
    ]


def test_top_defects_counts_unique_units_with_stable_ties():
    rows = [
        _record("U1", errtype="Alpha"),
        _record("U1", errtype="Alpha"),
        _record("U1", errtype="Beta"),
        _record("U2", errtype="Beta"),
        _record("U3", errtype="Gamma"),
        _record("U4", errtype="Gamma"),
        _record("U5", errtype="Delta"),
        _record("U6", errtype="Epsilon"),
        _record("U7", errtype="Zeta"),
        _record(None, errtype="Eta"),
    ]

    top = top_defects(rows)

    assert top == [
        {"name": "Beta", "value": 2},
        {"name": "Gamma", "value": 2},
        {"name": "Alpha", "value": 1},
        {"name": "Delta", "value": 1},
        {"name": "Epsilon", "value": 1},
    ]


def test_format_thousands_floors():
    assert format_thousands(1999) == "1 千"
    assert format_thousands(999) == "0 千"
    assert format_thousands(2000) == "2 千"


def test_summary_counts():
    rows = [_record(f"T{n}", _at(0)) for n in range(3)]
    rows += [_record(f"W{n}", _at(n + 1)) for n in range(8)]
    rows.append(_record("Z", None, car_type=None))

    summary = summary_counts(rows, TODAY, "ALL")

    assert summary["todayCount"] == 3
    # Today plus the six most recent earlier data-dates.
    assert summary["weekCount"] == 3 + 6
    assert summary["totalCount"] == "0 千"
    assert summary["currentModel"] == "V254"


def test_summary_counts_total_floors_thousands():
    rows = [_record(f"U{n}", _at(0)) for n in range(1999)]

    assert summary_counts(rows, TODAY)["totalCount"] == "1 千"


def test_summary_counts_current_model_fallbacks():
    assert summary_counts([], TODAY, "ALL", default_model="V206")["currentModel"] == "V206"
    assert summary_counts([], TODAY, "214")["currentModel"] == "V214"

    rows = [_record("U1", _at(0), car_type=None), _record("U2", _at(0), car_type="V300")]
    assert summary_counts(rows, TODAY, "ALL")["currentModel"] == "V300"


def test_summary_counts_empty():
    assert summary_counts([], TODAY) == {
        "todayCount": 0,
        "weekCount": 0,
        "totalCount": "0 千",
        "currentModel": "V254",
    }


def test_top_defects_tie_position_counts_rows_without_unit_id():
    rows = [
        _record(None, errtype="Beta"),
        _record("U1", errtype="Alpha"),
        _record("U2", errtype="Beta"),
        _record(None, errtype="Orphan"),
    ]

    assert top_defects(rows) == [
        {"name": "Beta", "value": 1},
        {"name": "Alpha", "value": 1},
    ]
