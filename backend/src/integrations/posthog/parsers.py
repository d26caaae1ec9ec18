"""
Parse PostHog query responses into KPI dicts.

The Query API returns slightly different shapes depending on the query
kind and API version (bare lists, {"results": [...]}, legacy
{"result": ...}). Every parser accepts all of them and returns an empty
KPI shape rather than raising on unexpected input.
"""

from typing import Any, Dict, List, Optional


def _sum(values: Any) -> float:
    if not isinstance(values, list):
        return 0
    return sum(v or 0 for v in values if isinstance(v, (int, float)) or v is None)


def _results(json: Any) -> List[Any]:
    if isinstance(json, dict):
        results = json.get("results")
        if results is None:
            results = json.get("result")
        if isinstance(results, list):
            return results
    return []


def _breakdown_count(result: Dict[str, Any]) -> float:
    """Count for a breakdown row: count, else the sum of data, else aggregated_value."""
    return result.get("count") or _sum(result.get("data")) or result.get("aggregated_value") or 0


def _traffic_from_series(series: Dict[str, Any]) -> Dict[str, Any]:
    data = series["data"]
    labels = series.get("labels") or series.get("days") or [f"Day {i + 1}" for i in range(len(data))]
    total = _sum(data)
    return {
        "series": data,
        "labels": labels,
        "unique_users": series.get("count") or total,
        "pageviews": total,
    }


def _first_series(json: Any) -> Dict[str, Any]:
    if isinstance(json, dict):
        for key in ("results", "result"):
            value = json.get(key)
            if isinstance(value, list):
                return value[0] if value and isinstance(value[0], dict) else {}
        result = json.get("result")
        if isinstance(result, dict):
            return result
    return {}


def parse_traffic(json: Any) -> Dict[str, Any]:
    """Daily series plus unique_users and pageviews totals."""
    if isinstance(json, list) and json:
        first = json[0]
        if isinstance(first, dict) and isinstance(first.get("data"), list):
            return _traffic_from_series(first)

    results = _results(json)
    if results and isinstance(results[0], dict) and isinstance(results[0].get("data"), list):
        return _traffic_from_series(results[0])

    series = _first_series(json)
    data = series.get("data") if isinstance(series.get("data"), list) else []
    total = _sum(data)
    uniques = series.get("aggregated_value")
    if uniques is None:
        uniques = series.get("count")
    if uniques is None:
        uniques = total
    return {
        "series": data,
        "labels": [f"Day {i + 1}" for i in range(len(data))],
        "unique_users": uniques,
        "pageviews": total,
    }


def parse_funnel(json: Any) -> Dict[str, Any]:
    """Funnel steps, overall conversion, and the largest step-to-step drop."""
    results = json.get("results") if isinstance(json, dict) else None
    if not isinstance(results, list) or not results:
        return {
            "steps": [],
            "conversion_rate": 0,
            "median_time_to_convert_sec": 0,
            "top_drop": {"from": "N/A", "to": "N/A", "dropRate": 0},
        }

    steps = []
    for index, step in enumerate(results):
        step = step if isinstance(step, dict) else {}
        steps.append({
            "name": step.get("custom_name") or step.get("name") or f"Step {index + 1}",
            "count": step.get("count") or 0,
        })

    first_count = steps[0]["count"]
    last_count = steps[-1]["count"]
    conversion_rate = last_count / first_count if first_count > 0 else 0

    max_drop = 0
    top_drop = {"from": "N/A", "to": "N/A", "dropRate": 0}
    for current, following in zip(steps, steps[1:]):
        drop_rate = (current["count"] - following["count"]) / current["count"] if current["count"] > 0 else 0
        if drop_rate > max_drop:
            max_drop = drop_rate
            top_drop = {"from": current["name"], "to": following["name"], "dropRate": drop_rate}

    return {
        "steps": steps,
        "conversion_rate": conversion_rate,
        "median_time_to_convert_sec": json.get("median_time_to_convert_sec") or 0,
        "top_drop": top_drop,
    }


LIFECYCLE_STATUSES = ("new", "returning", "resurrecting", "dormant")


def parse_lifecycle(json: Any) -> Dict[str, Any]:
    series = {status: [] for status in LIFECYCLE_STATUSES}
    results = json.get("results") if isinstance(json, dict) else None
    if not isinstance(results, list) or not results:
        return {"labels": [], "series": series}

    labels = []
    first_data = results[0].get("data") if isinstance(results[0], dict) else None
    if isinstance(first_data, list):
        labels = [f"Day {i + 1}" for i in range(len(first_data))]

    for result in results:
        if not isinstance(result, dict):
            continue
        label = (result.get("label") or "").lower()
        data = result.get("data") or []
        for status in LIFECYCLE_STATUSES:
            if status in label:
                series[status] = data
                break

    return {"labels": labels, "series": series}


def parse_device_mix(json: Any) -> Dict[str, Any]:
    """Share of unique users per device type (fractions summing to 1)."""
    results = json.get("results") if isinstance(json, dict) else None
    if not isinstance(results, list) or not results:
        return {"device_mix": {}}

    counts: Dict[str, float] = {}
    for result in results:
        if not isinstance(result, dict):
            continue
        device = result.get("breakdown_value") or result.get("label") or "Unknown"
        count = _breakdown_count(result)
        if count > 0:
            counts[str(device)] = count

    total = sum(counts.values())
    if total > 0:
        counts = {device: count / total for device, count in counts.items()}
    return {"device_mix": counts}


def parse_geography(json: Any) -> Dict[str, Any]:
    """Unique users per ISO country code."""
    countries: Dict[str, float] = {}
    for result in _results(json):
        if not isinstance(result, dict):
            continue
        country_code = result.get("breakdown_value") or result.get("label") or "Unknown"
        count = _breakdown_count(result)
        if isinstance(country_code, str) and country_code != "Unknown" and count > 0:
            countries[country_code.upper()] = count
    return {"countries": countries}


def parse_city_geography(json: Any) -> Dict[str, Any]:
    """Unique users per "City, CC"."""
    cities: Dict[str, Dict[str, Any]] = {}
    for result in _results(json):
        if not isinstance(result, dict):
            continue
        breakdown = result.get("breakdown_value")
        country_code = "Unknown"
        city_name = "Unknown"
        if isinstance(breakdown, list) and len(breakdown) >= 2:
            country_code = breakdown[0] or "Unknown"
            city_name = breakdown[1] or "Unknown"
        elif isinstance(breakdown, str):
            city_name = breakdown

        count = _breakdown_count(result)
        if city_name != "Unknown" and count > 0:
            cities[f"{city_name}, {country_code}"] = {
                "city": city_name,
                "country": country_code,
                "count": count,
            }
    return {"cities": cities}


def _cohort_value_count(value: Any) -> float:
    if isinstance(value, (int, float)):
        return value
    if isinstance(value, dict):
        return value.get("count") or value.get("value") or 0
    return 0


def parse_retention(json: Any, date_range: Optional[str] = "7d") -> Dict[str, Any]:
    """
    Day-N retention from the largest cohort.

    The cohort with the most day-0 users is used. d7_retention is the
    ratio of users on the target day (7 for a 7d range, otherwise 30,
    capped by the number of intervals returned) to day 0.
    """
    requested_days = 7 if date_range == "7d" else 30
    empty = {"d7_retention": 0, "values": [], "retention_period": requested_days}

    results = json.get("results") if isinstance(json, dict) else None
    if not isinstance(results, list) or not results:
        return empty

    best_cohort = None
    max_day0_users = 0
    for cohort in results:
        values = cohort.get("values") if isinstance(cohort, dict) else None
        if isinstance(values, list) and values:
            day0_count = _cohort_value_count(values[0])
            if day0_count > max_day0_users:
                max_day0_users = day0_count
                best_cohort = cohort

    if best_cohort is None or max_day0_users == 0:
        return empty

    available_days = min(len(best_cohort["values"]), 8)
    actual_days = min(requested_days, available_days - 1)

    values = []
    for day, value in enumerate(best_cohort["values"][:available_days]):
        count = _cohort_value_count(value)
        values.append({
            "day": day,
            "count": count,
            "percentage": round(count / max_day0_users * 100, 2),
        })

    day0_count = values[0]["count"]
    target_count = values[actual_days]["count"] if actual_days >= 0 else 0

    return {
        "d7_retention": target_count / day0_count if day0_count > 0 else 0,
        "values": values,
        "retention_period": actual_days,
        "cohort_date": best_cohort.get("date"),
        "cohort_label": best_cohort.get("label"),
        "total_day0_users": max_day0_users,
    }
