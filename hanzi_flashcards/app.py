import json
import logging
import os
import time
import uuid
from pathlib import Path
from typing import Any, Dict, Optional

from flask import Flask, Response, current_app, g, jsonify, request
from flask_cors import CORS
from werkzeug.exceptions import HTTPException

from . import database
from .config import load_settings
from .errors import FlashcardError, ImportSucceeded, NotFoundError, UnknownError, ValidationError
from .ingestion import create_character_set, import_character_file
from .pinyin_resolver import OverrideTable, PinyinResolver
from .review_sessions import ReviewSessionStore
from .scheduler import NEW_ROUND_MESSAGE

logger = logging.getLogger(__name__)
event_logger = logging.getLogger('hanzi_flashcards.events')
import_logger = logging.getLogger('hanzi_flashcards.imports')

UPLOAD_FIELDS = ('fontFile', 'file')


def _log(event: str, **fields):
    payload = {"event": event, **fields}
    event_logger.info(json.dumps(payload, ensure_ascii=False))


def _setup_import_log(logs_dir: Optional[Path]):
    """One JSON line per import attempt in LOGS_DIR/imports.log."""
    if logs_dir is None:
        return
    logs_dir = Path(logs_dir)
    logs_dir.mkdir(parents=True, exist_ok=True)
    log_file = (logs_dir / "imports.log").resolve()
    import_logger.setLevel(logging.INFO)
    for handler in list(import_logger.handlers):
        if isinstance(handler, logging.FileHandler):
            if Path(handler.baseFilename) == log_file:
                return
            import_logger.removeHandler(handler)
            handler.close()
    file_handler = logging.FileHandler(log_file, encoding='utf-8')
    file_handler.setFormatter(logging.Formatter('%(message)s'))
    import_logger.addHandler(file_handler)


def _resolver() -> PinyinResolver:
    return current_app.extensions['pinyin_resolver']


def _review_store() -> ReviewSessionStore:
    return current_app.extensions['review_sessions']


def _single_char(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    trimmed = value.strip()
    if len(trimmed) != 1:
        return None
    return trimmed


def _error_response(error: FlashcardError):
    body = error.to_dict(include_detail=current_app.config.get('EXPOSE_ERROR_DETAILS', False))
    return jsonify(body), error.status_code


def create_app(overrides: Optional[Dict[str, Any]] = None, pinyin_backend=None) -> Flask:
    """
    Build the Flask app.

    overrides: Flask config values applied on top of the environment settings
        (tests pass SQLALCHEMY_DATABASE_URI='sqlite://').
    pinyin_backend: replacement for the pypinyin romanizer.
    """
    app = Flask(__name__)
    app.config.update(load_settings())
    if overrides:
        app.config.update(overrides)

    CORS(app, origins=app.config['CORS_ORIGINS'], supports_credentials=True)

    database.init_db(app)
    _setup_import_log(app.config.get('LOGS_DIR'))

    # One resolver per app; the override table loads lazily on first lookup.
    app.extensions['pinyin_resolver'] = PinyinResolver(
        OverrideTable(app.config.get('POLYPHONIC_JSON')),
        backend=pinyin_backend,
    )
    app.extensions['review_sessions'] = ReviewSessionStore(
        max_sessions=app.config['REVIEW_MAX_SESSIONS'],
        seed=app.config.get('REVIEW_SEED'),
    )

    _register_request_logging(app)
    _register_error_handlers(app)
    _register_routes(app)
    return app


def _register_request_logging(app: Flask):
    @app.before_request
    def _before_request():
        g._start_time = time.time()
        g.request_id = request.headers.get("X-Request-Id") or str(uuid.uuid4())

    @app.after_request
    def _after_request(response):
        latency_ms = int((time.time() - getattr(g, "_start_time", time.time())) * 1000)
        _log(
            "http_request",
            request_id=getattr(g, "request_id", None),
            method=request.method,
            path=request.path,
            status=response.status_code,
            latency_ms=latency_ms,
        )
        response.headers["X-Request-Id"] = getattr(g, "request_id", "")
        return response


def _register_error_handlers(app: Flask):
    @app.errorhandler(FlashcardError)
    def _handle_flashcard_error(error: FlashcardError):
        if error.status_code >= 500:
            logger.error("%s: %s (%s)", type(error).__name__, error.message, error.detail)
        return _error_response(error)

    @app.errorhandler(Exception)
    def _handle_unexpected(error: Exception):
        if isinstance(error, HTTPException):
            return error
        logger.exception("Unhandled error on %s %s", request.method, request.path)
        database.db.session.rollback()
        return _error_response(UnknownError('服务器内部错误。', detail=str(error)))


def _register_routes(app: Flask):
    @app.route('/api/health', methods=['GET'])
    def health():
        """Health check endpoint"""
        return jsonify({'status': 'ok', 'database': database.ping()})

    @app.route('/api/characters', methods=['GET'])
    def list_character_sets():
        """All character sets (id, name, count), newest first."""
        return jsonify(database.list_character_sets())

    @app.route('/api/characters', methods=['POST'])
    def create_set():
        data = request.get_json(silent=True)
        if not isinstance(data, dict):
            raise ValidationError('请求体不是有效的JSON格式。')
        characters = data.get('characters')
        if not isinstance(characters, list) or not characters:
            raise ValidationError('字库名称和汉字列表不能为空')
        character_set = create_character_set(
            data.get('name') or '',
            characters,
            _resolver(),
            description=data.get('description'),
        )
        database.invalidate_set_listing_cache()
        _log("set_created", request_id=g.request_id, set_id=character_set.id, count=len(character_set.characters))
        return jsonify(character_set.to_dict()), 201

    @app.route('/api/characters/import', methods=['POST'])
    def import_set():
        """Import a character list file (UTF-8 or GBK, one character per line)."""
        upload = next((request.files[f] for f in UPLOAD_FIELDS if f in request.files), None)
        raw = upload.read() if upload is not None else None
        filename = (upload.filename or '') if upload is not None else ''

        result = import_character_file(
            raw,
            filename,
            _resolver(),
            on_imported=database.invalidate_set_listing_cache,
        )

        audit = {"filename": filename, "bytes": len(raw or b""), "request_id": g.request_id}
        if isinstance(result, ImportSucceeded):
            audit.update(success=True, set_id=result.set_id, set_name=result.set_name, count=result.character_count)
            import_logger.info(json.dumps(audit, ensure_ascii=False))
            _log("import_succeeded", **audit)
            return jsonify({
                'success': True,
                'message': result.message,
                'characterSet': {'id': result.set_id, 'name': result.set_name},
                'characterCount': result.character_count,
            }), 201

        audit.update(success=False, reason=result.reason)
        import_logger.info(json.dumps(audit, ensure_ascii=False))
        _log("import_failed", **audit)
        body = result.error.to_dict(include_detail=current_app.config.get('EXPOSE_ERROR_DETAILS', False))
        body['success'] = False
        return jsonify(body), result.error.status_code

    @app.route('/api/characters/default', methods=['GET'])
    def get_default_set():
        """The set to show when nothing is selected."""
        character_set = database.get_default_character_set()
        if character_set is None:
            raise NotFoundError('还没有任何字库，请先导入。')
        return jsonify(character_set.to_dict())

    @app.route('/api/characters/<int:set_id>', methods=['GET'])
    def get_set(set_id: int):
        character_set = database.get_character_set(set_id)
        if character_set is None:
            raise NotFoundError('未找到指定ID的字库')
        return jsonify(character_set.to_dict())

    @app.route('/api/characters/<int:set_id>', methods=['DELETE'])
    def delete_set(set_id: int):
        if not database.delete_character_set(set_id):
            raise NotFoundError('未找到指定ID的字库')
        _log("set_deleted", request_id=g.request_id, set_id=set_id)
        return "", 204

    @app.route('/api/characters/character/<int:char_id>/pinyin', methods=['PATCH'])
    def update_pinyin(char_id: int):
        """Replace a character's pinyin (array, or comma-separated string)."""
        data = request.get_json(silent=True) or {}
        pinyin = data.get('pinyin')
        if isinstance(pinyin, str):
            pinyin = [p.strip() for p in pinyin.split(',') if p.strip()]
        if not isinstance(pinyin, list) or not pinyin or not all(isinstance(p, str) and p.strip() for p in pinyin):
            raise ValidationError('pinyin 必须是非空字符串数组')
        character = database.update_character_pinyin(char_id, [p.strip() for p in pinyin])
        if character is None:
            raise NotFoundError('未找到指定ID的汉字')
        return jsonify(character.to_dict())

    @app.route('/api/pinyin/<path:char>', methods=['GET'])
    def get_pinyin(char: str):
        if len(char) != 1:
            return jsonify([]), 400
        readings = _resolver().resolve(char)
        if not readings:
            return jsonify([]), 404
        return jsonify(readings)

    @app.route('/api/learned', methods=['GET'])
    def get_learned():
        char = _single_char(request.args.get('char'))
        if not char:
            raise ValidationError('查询参数 char 必须是单个汉字。')
        return jsonify({'learned': database.is_learned(char)})

    @app.route('/api/learned', methods=['POST'])
    def mark_learned():
        data = request.get_json(silent=True) or {}
        char = _single_char(data.get('char'))
        if not char:
            raise ValidationError('请求体 char 必须是单个汉字。')
        database.mark_learned(char)
        return jsonify({'success': True})

    @app.route('/api/learned', methods=['DELETE'])
    def unmark_learned():
        data = request.get_json(silent=True) or {}
        char = _single_char(data.get('char'))
        if not char:
            raise ValidationError('请求体 char 必须是单个汉字。')
        database.unmark_learned(char)
        return "", 204

    @app.route('/api/learned/export', methods=['GET'])
    def export_learned():
        return Response(
            database.export_learned_text(),
            headers={
                'Content-Type': 'text/plain; charset=utf-8',
                'Content-Disposition': 'attachment; filename="learned-characters.txt"',
            },
        )

    @app.route('/api/review/sessions', methods=['POST'])
    def start_review():
        """Activate a set: shuffle it and show the first character."""
        data = request.get_json(silent=True) or {}
        set_id = data.get('set_id')
        if not isinstance(set_id, int) or isinstance(set_id, bool):
            raise ValidationError('set_id 必须是整数')
        character_set = database.get_character_set(set_id)
        if character_set is None:
            raise NotFoundError('未找到指定ID的字库')
        session = _review_store().start(set_id, [c.to_dict() for c in character_set.characters])
        return jsonify(session), 201

    @app.route('/api/review/sessions/<session_id>', methods=['GET'])
    def get_review(session_id: str):
        return jsonify(_review_store().get(session_id))

    @app.route('/api/review/sessions/<session_id>/next', methods=['POST'])
    def next_review(session_id: str):
        session, result = _review_store().advance(session_id)
        if not result.ok:
            return jsonify({**session, 'error': result.message}), 400
        return jsonify({
            **session,
            'roundStarted': result.round_started,
            'message': NEW_ROUND_MESSAGE if result.round_started else None,
        })

    @app.route('/api/review/sessions/<session_id>', methods=['DELETE'])
    def end_review(session_id: str):
        _review_store().end(session_id)
        return "", 204


if __name__ == '__main__':
    logging.basicConfig(level=logging.INFO, format='%(asctime)s %(levelname)s %(name)s: %(message)s')
    app = create_app()
    port = int(os.getenv('PORT', 5001))
    host = '0.0.0.0'
    debug_enabled = os.getenv('FLASK_DEBUG', '').strip().lower() in ('1', 'true', 'yes', 'on')
    print(f"\nStarting Flask server on http://{host}:{port}")
    app.run(debug=debug_enabled, host=host, port=port)
