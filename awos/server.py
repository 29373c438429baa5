import logging
import os
import resource
import sys
import threading
import time
from datetime import timedelta

from flask import Flask, Response, jsonify, request, stream_with_context
from flask_cors import CORS
from pydantic import ValidationError

from .config import Config
from .models import format_timestamp, parse_timestamp, utcnow
from .readings import SensorReadingModel, open_store
from .relay import SSE_HEADERS, RealtimeRelay
from .schemas import ESP32Reading, IngestReading, validation_details
from .stats import StatsRecorder
from .testdata import generate_test_reading

logger = logging.getLogger(__name__)

ESP32_FRESH_MS = 120_000


def parse_range_param(range_str):
    """
    Turn ``15m``, ``6h``, ``7d``, ``all`` or an ISO start into ``(start, end)``.

    ``all`` gives no start bound. Anything unparsable falls back to the last hour.
    """
    end = utcnow()
    if not range_str or range_str == '1m':
        start = end - timedelta(minutes=1)
    elif range_str == 'all':
        return None, end
    elif range_str[-1] in 'mhd' and range_str[:-1].isdigit():
        amount = int(range_str[:-1])
        unit = {'m': 'minutes', 'h': 'hours', 'd': 'days'}[range_str[-1]]
        try:
            start = end - timedelta(**{unit: amount})
        except (OverflowError, ValueError):
            start = end - timedelta(hours=1)
    else:
        try:
            start = parse_timestamp(range_str)
        except ValueError:
            start = end - timedelta(hours=1)
    return start, end


def _station_param():
    # runway is the legacy name for stationId
    return request.args.get('stationId') or request.args.get('runway') or None


def _int_arg(name, default):
    try:
        return int(request.args.get(name, default))
    except (TypeError, ValueError):
        return default


def _time_arg(name):
    value = request.args.get(name)
    if not value:
        return None
    return parse_timestamp(value)


def _json_body():
    body = request.get_json(silent=True)
    return body if isinstance(body, dict) else {}


def memory_usage_mb():
    """(used, total) in MB: peak RSS of this process and physical memory of the host."""
    rss = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss
    used = rss / 1024 / 1024 if sys.platform == 'darwin' else rss / 1024
    try:
        total = os.sysconf('SC_PAGE_SIZE') * os.sysconf('SC_PHYS_PAGES') / 1024 / 1024
    except (ValueError, OSError, AttributeError):
        total = None
    return used, total


def create_app(config: Config | None = None, store=None, stats: StatsRecorder | None = None,
               relay_sleep=time.sleep) -> Flask:
    config = config or Config.from_env()
    store = store if store is not None else open_store(config)
    stats = stats or StatsRecorder()
    model = SensorReadingModel(store, default_station_id=config.default_station_id)
    relay = RealtimeRelay(
        model,
        poll_interval=config.realtime_poll_interval,
        batch_limit=config.realtime_batch_limit,
        sleep=relay_sleep,
    )

    app = Flask(__name__)
    CORS(app)
    app.config['AWOS'] = config
    app.extensions['awos'] = {'model': model, 'stats': stats, 'relay': relay}

    started = time.monotonic()
    esp32_lock = threading.Lock()
    esp32_state = {'data': None, 'updated': 0.0}

    @app.route('/api/health')
    def api_health():
        try:
            used, total = memory_usage_mb()
            return jsonify({
                'status': 'healthy',
                'timestamp': format_timestamp(utcnow()),
                'uptime': time.monotonic() - started,
                'memory': {
                    'used': round(used, 2),
                    'total': round(total, 2) if total is not None else None,
                },
                'environment': config.environment,
            }), 200
        except Exception as e:
            logger.exception("Health check failed")
            return jsonify({
                'status': 'unhealthy',
                'timestamp': format_timestamp(utcnow()),
                'error': str(e),
            }), 500

    @app.route('/api/monitor')
    def api_monitor():
        used, total = memory_usage_mb()
        return jsonify({
            'status': 'running',
            'uptime': f"{round(time.monotonic() - started)}s",
            'memory': {
                'used': f"{round(used)}MB",
                'total': f"{round(total)}MB" if total is not None else None,
            },
            'esp32Stats': stats.snapshot(),
            'timestamp': format_timestamp(utcnow()),
        })

    @app.route('/api/stations')
    def api_stations():
        try:
            return jsonify({'stations': model.station_ids()})
        except Exception as e:
            logger.exception("Error listing stations")
            return jsonify({'ok': False, 'error': str(e)}), 500

    @app.route('/api/readings/current')
    def api_current_reading():
        try:
            reading = model.find_latest(_station_param())
            return jsonify({'ok': True, 'reading': reading.to_dict() if reading else None})
        except Exception as e:
            logger.exception("Error fetching current reading")
            return jsonify({'ok': False, 'error': str(e)}), 500

    @app.route('/api/readings')
    def api_readings():
        station_id = _station_param()
        limit = _int_arg('limit', 100)
        offset = _int_arg('offset', 0)
        try:
            start_time = _time_arg('startTime')
            end_time = _time_arg('endTime')
            if start_time is None and end_time is None and request.args.get('range'):
                start_time, end_time = parse_range_param(request.args['range'])
        except ValueError as e:
            return jsonify({'ok': False, 'error': f"Invalid time parameter: {e}"}), 400

        try:
            data = model.find_many(
                station_id=station_id, start_time=start_time, end_time=end_time,
                limit=limit, offset=offset, order_by='desc',
            )
            total = model.count(station_id=station_id, start_time=start_time, end_time=end_time)
        except Exception:
            logger.exception("Error listing readings")
            return jsonify({'ok': False, 'error': 'Internal server error'}), 500

        return jsonify({
            'ok': True,
            'data': [r.to_dict() for r in data],
            'pagination': {
                'offset': offset,
                'limit': limit,
                'total': total,
                'hasMore': offset + limit < total,
            },
            'filters': {
                'stationId': station_id,
                'startTime': request.args.get('startTime'),
                'endTime': request.args.get('endTime'),
            },
        })

    @app.route('/api/readings/add', methods=['POST'])
    def api_add_reading():
        body = _json_body()
        try:
            reading = model.create_server_side({
                'stationId': body.get('stationId') or config.default_station_id,
                'temperature': body.get('temperature'),
                'humidity': body.get('humidity'),
                'pressure': body.get('pressure'),
                'windSpeed': body.get('windSpeed'),
                'windDirection': body.get('windDirection'),
                'windGust': body.get('windGust'),
                'visibility': body.get('visibility'),
                'weatherDescription': body.get('weatherDescription'),
                'dataQuality': body.get('dataQuality') or 'good',
                'timestamp': body.get('timestamp'),
            })
        except Exception as e:
            logger.exception("Error adding reading")
            return jsonify({'ok': False, 'error': str(e) or 'Failed to add reading'}), 500
        return jsonify({'ok': True, 'message': 'Reading added successfully', 'data': reading.to_dict()})

    @app.route('/api/ingest', methods=['POST'])
    def api_ingest():
        try:
            validated = IngestReading.model_validate(_json_body())
        except ValidationError as e:
            return jsonify({
                'success': False,
                'error': 'Validation failed',
                'details': validation_details(e),
            }), 400

        try:
            reading = model.create_server_side(validated.model_dump(by_alias=True))
        except Exception as e:
            logger.exception("Error in sensor data ingestion")
            return jsonify({'success': False, 'error': 'Database error', 'message': str(e)}), 500

        logger.info("[ingest] Created sensor reading %s", reading.id)
        return jsonify({
            'success': True,
            'data': reading.to_dict(),
            'message': 'Sensor reading stored successfully',
        }), 201

    @app.route('/api/ingest', methods=['GET'])
    def api_ingest_health():
        return jsonify({
            'status': 'healthy',
            'service': 'AWOS Sensor Data Ingestion API',
            'timestamp': format_timestamp(utcnow()),
            'message': 'API is running and ready to receive sensor data',
        })

    @app.route('/api/esp32', methods=['POST'])
    def api_esp32_post():
        t0 = time.perf_counter()

        def elapsed_ms():
            return (time.perf_counter() - t0) * 1000

        try:
            validated = ESP32Reading.model_validate(_json_body())
        except ValidationError as e:
            stats.record(False, elapsed_ms(), f"Validation failed: {e.error_count()} error(s)")
            return jsonify({
                'success': False,
                'error': 'Validation failed',
                'details': validation_details(e),
            }), 400

        now = utcnow()
        with esp32_lock:
            esp32_state['data'] = {
                **validated.model_dump(by_alias=True),
                'timestamp': format_timestamp(now),
                'receivedAt': int(now.timestamp() * 1000),
            }
            esp32_state['updated'] = time.time()

        try:
            saved = model.create_server_side({
                'stationId': validated.station_id,
                'temperature': validated.temperature,
                'humidity': validated.humidity,
                'pressure': validated.pressure,
                'dewPoint': validated.dew_point,
                'windSpeed': validated.wind_speed,
                'windDirection': validated.wind_direction,
                'timestamp': now,
                'dataQuality': 'good',
            })
        except Exception as e:
            logger.exception("Error processing ESP32 data")
            stats.record(False, elapsed_ms(), str(e))
            return jsonify({
                'success': False,
                'error': 'Internal server error',
                'message': str(e),
            }), 500

        stats.record(True, elapsed_ms())
        logger.info("[esp32] Stored reading %s from %s", saved.id, saved.station_id)
        return jsonify({
            'success': True,
            'data': saved.to_dict(),
            'message': 'ESP32 data received and stored successfully',
        }), 201

    @app.route('/api/esp32', methods=['GET'])
    def api_esp32_get():
        with esp32_lock:
            latest = esp32_state['data']
            updated = esp32_state['updated']
        if latest is None:
            return jsonify({
                'success': False,
                'error': 'No ESP32 data available',
                'message': 'No data has been received from ESP32 yet',
            }), 404

        age_ms = int((time.time() - updated) * 1000)
        fresh = age_ms < ESP32_FRESH_MS
        return jsonify({
            'success': True,
            'data': {
                **latest,
                'dataAge': age_ms,
                'isDataFresh': fresh,
                'connectionStatus': 'connected' if fresh else 'stale',
            },
            'timestamp': format_timestamp(utcnow()),
        })

    @app.route('/api/aggregates')
    def api_aggregates():
        station_id = _station_param()
        span = request.args.get('span', 'hour')
        start = request.args.get('start')
        end = request.args.get('end')
        if not start or not end:
            return jsonify({'ok': False, 'error': 'start and end parameters are required'}), 400
        try:
            start_time = parse_timestamp(start)
            end_time = parse_timestamp(end)
        except ValueError:
            return jsonify({'ok': False, 'error': 'Invalid date format for start or end parameter'}), 400

        try:
            agg = model.get_aggregated_data(start_time, end_time, station_id=station_id)
        except Exception as e:
            logger.exception("Aggregates error")
            return jsonify({'ok': False, 'error': str(e)}), 500

        start_iso, end_iso = format_timestamp(start_time), format_timestamp(end_time)
        return jsonify({
            'ok': True,
            'span': span,
            'results': [{
                '_id': f"{start_iso}_{end_iso}",
                'avgWindSpeed': agg['avgWindSpeed'],
                'avgTemperature': agg['avgTemperature'],
                'avgHumidity': agg['avgHumidity'],
                'avgPressure': agg['avgPressure'],
                'maxWindGust': agg['maxWindGust'],
                'totalPrecipitation': agg['totalPrecipitation'],
                'count': agg['count'],
            }],
            'metadata': {
                'stationId': station_id or 'all',
                'startTime': start_iso,
                'endTime': end_iso,
                'totalReadings': agg['count'],
            },
        })

    @app.route('/api/history/<runway>')
    def api_history(runway):
        try:
            days = float(request.args.get('days', 30))
        except ValueError:
            days = 30.0
        limit = 500 if days < 2 else 1000
        station_id = runway if 'VCBI' in runway else f"VCBI-{runway}"
        try:
            readings = model.find_many(
                station_id=station_id,
                start_time=utcnow() - timedelta(days=days),
                limit=limit,
                order_by='desc',
            )
        except Exception:
            logger.exception("Error fetching historical data")
            return jsonify({'ok': False, 'error': 'Failed to fetch historical data'}), 500

        return jsonify([
            {
                'id': r.id,
                'timestamp': format_timestamp(r.timestamp),
                'temperature': r.temperature,
                'humidity': r.humidity,
                'pressure': r.pressure,
                'dewPoint': r.dew_point,
                'windSpeed': r.wind_speed,
                'windDirection': r.wind_direction,
                'batteryVoltage': r.battery_voltage,
                'solarPanelVoltage': r.solar_panel_voltage,
                'stationId': r.station_id,
                'dataQuality': r.data_quality,
            }
            for r in readings
        ]), 200

    @app.route('/api/test/realtime-insert', methods=['POST'])
    def api_test_realtime_insert():
        station_id = _json_body().get('stationId') or config.default_station_id
        test_data = generate_test_reading(station_id)
        logger.info("Inserting test sensor reading: %s", test_data)
        try:
            reading = model.create_server_side(test_data)
        except Exception as e:
            logger.exception("Test insert failed")
            return jsonify({'success': False, 'error': str(e), 'message': 'Test insert failed'}), 500

        return jsonify({
            'success': True,
            'message': 'Test sensor reading inserted - check dashboard for realtime update!',
            'data': {
                'id': reading.id,
                'stationId': reading.station_id,
                'temperature': reading.temperature,
                'humidity': reading.humidity,
                'pressure': reading.pressure,
                'timestamp': format_timestamp(reading.timestamp),
            },
        })

    @app.route('/api/db/health')
    def api_db_health():
        try:
            summary = model.summary()
        except Exception as e:
            logger.exception("Database health check failed")
            return jsonify({'ok': False, 'status': 'error', 'error': str(e)}), 500
        return jsonify({
            'ok': True,
            'status': 'connected',
            **store.describe(),
            'stats': summary,
        })

    @app.route('/api/realtime')
    def api_realtime():
        station_id = _station_param()
        logger.info("[relay] Client subscribed (station=%s)", station_id or 'all')
        return Response(
            stream_with_context(relay.stream(station_id)),
            mimetype='text/event-stream',
            headers=SSE_HEADERS,
        )

    return app
