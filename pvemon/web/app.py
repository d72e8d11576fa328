"""
Web Application Module

This module provides a small Flask JSON API for operators: view and change
alert thresholds, read the alert history and browse stored node metrics.
"""

from flask import Flask, jsonify, request

from pvemon.metrics import METRIC_NAMES
from pvemon.scheduler import CollectionScheduler


def create_app(alert_system: CollectionScheduler) -> Flask:
    """Create and configure the Flask application."""

    app = Flask(__name__)

    thresholds = alert_system.evaluator.thresholds
    alert_log = alert_system.evaluator.alert_log
    metric_storage = alert_system.collector.storage
    source = alert_system.collector.source
    max_history_hours = alert_system.retention_days * 24

    @app.route('/api/thresholds')
    def list_thresholds():
        """List all alert thresholds."""
        return jsonify([t.to_dict() for t in thresholds.list()])

    @app.route('/api/thresholds/<metric>', methods=['PUT'])
    def update_threshold(metric: str):
        """Update threshold value and enabled flag of one metric."""
        current = thresholds.get(metric)
        if current is None:
            return jsonify({'error': f'Unknown metric: {metric}'}), 404

        data = request.get_json(silent=True) or {}
        try:
            value = float(data.get('threshold', current.threshold))
        except (TypeError, ValueError):
            return jsonify({'error': 'threshold must be a number'}), 400
        enabled = data.get('enabled', current.enabled)
        if not isinstance(enabled, bool):
            return jsonify({'error': 'enabled must be a boolean'}), 400

        try:
            updated = thresholds.update(metric, value, enabled)
        except ValueError as e:
            return jsonify({'error': str(e)}), 400

        return jsonify(updated.to_dict())

    @app.route('/api/alerts/history')
    def alert_history():
        """Most recent fired alerts, newest first."""
        try:
            limit = int(request.args.get('limit', 10))
        except ValueError:
            return jsonify({'error': 'limit must be an integer'}), 400
        return jsonify([e.to_dict() for e in alert_log.list(limit)])

    @app.route('/api/nodes')
    def list_nodes():
        """Configured nodes and the errors of the last tick."""
        return jsonify({
            'nodes': source.get_node_names(),
            'errors': alert_system.last_node_errors,
            'last_check': alert_system.last_tick_at.isoformat() if alert_system.last_tick_at else None
        })

    @app.route('/api/nodes/<node_name>/metrics/latest')
    def latest_metrics(node_name: str):
        """Latest stored value of each metric for a node."""
        if node_name not in source.get_node_names():
            return jsonify({'error': f'Unknown node: {node_name}'}), 404
        return jsonify({'node': node_name, 'metrics': metric_storage.get_latest(node_name)})

    @app.route('/api/nodes/<node_name>/metrics/<metric>')
    def metric_history(node_name: str, metric: str):
        """Time series of one metric for a node."""
        if node_name not in source.get_node_names():
            return jsonify({'error': f'Unknown node: {node_name}'}), 404
        if metric not in METRIC_NAMES:
            return jsonify({'error': f'Unknown metric: {metric}'}), 404
        try:
            hours = int(request.args.get('hours', 24))
        except ValueError:
            return jsonify({'error': 'hours must be an integer'}), 400
        if not 1 <= hours <= max_history_hours:
            return jsonify({'error': f'hours must be between 1 and {max_history_hours}'}), 400

        points = metric_storage.get_history(node_name, metric, hours)
        return jsonify({
            'node': node_name,
            'metric': metric,
            'hours': hours,
            'data': [{'timestamp': p.timestamp, 'value': p.value} for p in points]
        })

    return app
