import logging
import math
import time
from dataclasses import dataclass
from typing import Callable, Optional

import click
import requests
from flask import Flask, jsonify, request

from .config import Config
from .errors import DriverNotFound, StoreUnavailable
from .geolog.aggregate import DistanceAggregator
from .geolog.classifier import Classifier, ThresholdStore
from .geolog.ingest import LocationConsumer
from .geolog.query import DEFAULT_WINDOW_MINUTES, WindowedQueryEngine
from .geolog.store import GeoLogStore
from .models import db

log = logging.getLogger(__name__)


@dataclass
class ServiceContext:
    store: GeoLogStore
    thresholds: ThresholdStore
    query_engine: WindowedQueryEngine
    classifier: Classifier
    consumer: LocationConsumer

    @classmethod
    def build(cls, engine, config: Config, http: Optional[requests.Session] = None,
              clock: Callable[[], float] = time.time) -> "ServiceContext":
        store = GeoLogStore(engine)
        thresholds = ThresholdStore(engine)
        return cls(
            store=store,
            thresholds=thresholds,
            query_engine=WindowedQueryEngine(store, clock=clock),
            classifier=Classifier(
                thresholds,
                DistanceAggregator(store),
                config.location_service_url,
                http=http,
                timeout=config.http_timeout,
            ),
            consumer=LocationConsumer(store, clock=clock),
        )


def parse_minutes(raw: Optional[str]) -> float:
    if raw is None:
        return DEFAULT_WINDOW_MINUTES
    try:
        minutes = float(raw)
    except ValueError:
        return DEFAULT_WINDOW_MINUTES
    if not math.isfinite(minutes) or minutes <= 0:
        return DEFAULT_WINDOW_MINUTES
    return minutes


def create_app(config: Optional[Config] = None, http: Optional[requests.Session] = None,
               clock: Callable[[], float] = time.time) -> Flask:
    config = config or Config.from_env()

    app = Flask(__name__)
    app.config.update(config.flask_settings())
    db.init_app(app)

    with app.app_context():
        db.create_all()
        context = ServiceContext.build(db.engine, config, http=http, clock=clock)

    app.extensions['zombiewatch'] = context

    @app.route('/health')
    def health():
        return jsonify(status="ok")

    @app.route('/drivers/<driver_id>/locations')
    def get_locations(driver_id):
        minutes = parse_minutes(request.args.get('minutes'))
        wants_distance = request.args.get('distance', 'false') == 'true'

        try:
            records = context.query_engine.query(driver_id, minutes, include_distance=wants_distance)
        except DriverNotFound:
            return jsonify(message="Driver not found"), 404
        except StoreUnavailable as e:
            log.error("Error in processing location request for driver %s: %s", driver_id, e)
            return "Ooops. Something went wrong on our side.", 500

        return jsonify([r.to_dict() for r in records])

    @app.route('/drivers/<driver_id>')
    def zombie_detector(driver_id):
        result = context.classifier.classify(driver_id)
        return jsonify(result.to_dict()), result.status

    @app.cli.command('ingest')
    @click.argument('source', type=click.File('rb'), default='-')
    def ingest_command(source):
        """Persist newline-delimited JSON location messages."""
        consumer = context.consumer
        consumer.start()
        try:
            for line in source:
                line = line.strip()
                if line:
                    consumer.publish(line)
            consumer.join()
        finally:
            consumer.stop()
        click.echo(f"Persisted {consumer.persisted} message(s).")

    return app


def main():
    config = Config.from_env()
    logging.basicConfig(
        level=config.log_level,
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )
    app = create_app(config)
    log.info("Serving on port %s, location service at %s", config.port, config.location_service_url)
    app.run(host='0.0.0.0', port=config.port)


if __name__ == '__main__':
    main()
