"""HTTP API for the phone client.

    GET  /cascades                 [{id, title, active}]
    GET  /snapshot/<id>            cached snapshot {html, bodyBg, bodyColor}
    GET  /snapshot                 snapshot of the focused (or first) cascade
    GET  /styles/<id>              {css}
    POST /send/<id>                {message} -> type into the cascade
    POST /action/<id>/<action>     new | history | close
    GET  /events                   SSE stream of cascade_list / snapshot_update
"""
import json
import queue
from pathlib import Path

from flask import Flask, Response, jsonify, request, stream_with_context

from cascade_monitor import CascadeNotFound

PUBLIC_DIR = Path(__file__).parent / 'public'
KEEPALIVE_SECONDS = 25


def create_app(monitor, static_dir=PUBLIC_DIR):
    app = Flask(__name__, static_folder=str(static_dir), static_url_path='')

    @app.errorhandler(CascadeNotFound)
    def cascade_not_found(_exc):
        return jsonify({'error': 'Cascade not found'}), 404

    @app.get('/cascades')
    def list_cascades():
        return jsonify(monitor.list_cascades())

    @app.get('/snapshot/<cascade_id>')
    def get_snapshot(cascade_id):
        return jsonify(monitor.get_snapshot(cascade_id).to_json())

    @app.get('/snapshot')
    def get_primary_snapshot():
        snapshot = monitor.primary_snapshot()
        if snapshot is None:
            return jsonify({'error': 'No snapshot'}), 503
        return jsonify(snapshot.to_json())

    @app.get('/styles/<cascade_id>')
    def get_styles(cascade_id):
        return jsonify({'css': monitor.get_styles(cascade_id)})

    @app.post('/send/<cascade_id>')
    def send_message(cascade_id):
        monitor.require(cascade_id)
        body = request.get_json(silent=True) or {}
        message = body.get('message')
        if not isinstance(message, str) or not message:
            return jsonify({'error': 'message is required'}), 400
        result = monitor.send_message(cascade_id, message)
        if result.ok:
            return jsonify({'success': True})
        return jsonify(result.to_json()), 500

    @app.post('/action/<cascade_id>/<action>')
    def perform_action(cascade_id, action):
        result = monitor.perform_action(cascade_id, action)
        if result.ok:
            return jsonify({'success': True, 'message': result.message})
        return jsonify(result.to_json()), 500

    @app.get('/events')
    def events():
        """SSE stream: cascade list on connect, then every broadcast."""
        q = monitor.subscribe()

        def generate():
            try:
                yield ": connected\n\n"
                while True:
                    try:
                        message = q.get(timeout=KEEPALIVE_SECONDS)
                        yield f"data: {json.dumps(message, ensure_ascii=False)}\n\n"
                    except queue.Empty:
                        yield ": keepalive\n\n"
            finally:
                monitor.unsubscribe(q)

        return Response(
            stream_with_context(generate()),
            mimetype='text/event-stream',
            headers={
                'Cache-Control': 'no-cache',
                'X-Accel-Buffering': 'no',
            },
        )

    return app
