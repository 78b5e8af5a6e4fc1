import os
import logging
import tempfile

from dotenv import load_dotenv
from flask import Flask, request, jsonify
from flask_cors import CORS
from werkzeug.exceptions import HTTPException, RequestEntityTooLarge

from services.errors import ValidationError, UpstreamServiceError
from services.generator import MusicGenerator
from services.pipeline import ConversionRequest, convert_from_prompt, convert_from_upload
from services.scratch import ScratchSpace
from services.transcriber import BasicPitchTranscriber, DEFAULT_TIMEOUT

load_dotenv()

# Configuration
TMP_DIR = os.environ.get('MIDI_CONVERTER_TMP_DIR', os.path.join(tempfile.gettempdir(), 'midi-converter'))
MAX_UPLOAD_MB = int(os.environ.get('MAX_UPLOAD_MB', 50))

# Logging
logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)

# Flask app
app = Flask(__name__)
app.config.update(
    ELEVENLABS_API_KEY=os.environ.get('ELEVENLABS_API_KEY'),
    SCRATCH_DIR=TMP_DIR,
    BASIC_PITCH_CMD=os.environ.get('BASIC_PITCH_CMD', 'basic-pitch'),
    TRANSCRIBE_TIMEOUT=float(os.environ.get('TRANSCRIBE_TIMEOUT', DEFAULT_TIMEOUT)),
    MAX_CONTENT_LENGTH=MAX_UPLOAD_MB * 1024 * 1024,
)
CORS(
    app,
    resources={r"/convert-from-.*": {"origins": "*"}},
    methods=['POST', 'OPTIONS'],
    allow_headers=['Content-Type'],
    send_wildcard=True,
)


def get_transcriber() -> BasicPitchTranscriber:
    return BasicPitchTranscriber(app.config['BASIC_PITCH_CMD'], app.config['TRANSCRIBE_TIMEOUT'])


def get_scratch_space() -> ScratchSpace:
    return ScratchSpace(app.config['SCRATCH_DIR'])


def get_music_generator(api_key: str) -> MusicGenerator:
    return MusicGenerator(api_key)


def error_response(error: Exception, label: str):
    """Build the error envelope. Only validation failures are the caller's fault."""
    if isinstance(error, ValidationError):
        return jsonify({'error': str(error), 'details': str(error)}), 400

    body = {'error': label, 'details': str(error)}
    if isinstance(error, UpstreamServiceError) and error.status_code is not None:
        body['statusCode'] = error.status_code
    return jsonify(body), 500


# ─── REST API ──────────────────────────────────────────────────

@app.route('/health', methods=['GET'])
def health_check():
    return jsonify({
        'status': 'ok',
        'transcriber': app.config['BASIC_PITCH_CMD'],
        'generation_configured': bool(app.config.get('ELEVENLABS_API_KEY')),
    })


@app.route('/convert-from-prompt', methods=['POST'])
def convert_prompt():
    """Generate music from a text prompt and return its MIDI transcription."""
    data = request.get_json(silent=True)
    logger.info(f"convert-from-prompt request: {data}")

    try:
        conversion = ConversionRequest.from_json(data)
        result = convert_from_prompt(
            conversion,
            app.config.get('ELEVENLABS_API_KEY'),
            get_transcriber(),
            get_scratch_space(),
            generator_factory=get_music_generator,
        )
    except ValidationError as e:
        logger.warning(f"Rejected convert-from-prompt request: {e}")
        return error_response(e, 'Invalid request')
    except Exception as e:
        logger.exception(f"Error in convert-from-prompt ({getattr(e, 'kind', 'unexpected')}): {e}")
        if isinstance(e, UpstreamServiceError) and e.status_code is not None:
            logger.error(f"Upstream status {e.status_code}, body: {e.body}")
        return error_response(e, 'Failed to convert song')

    return jsonify(result)


@app.route('/convert-from-upload', methods=['POST'])
def convert_upload():
    """Transcribe an uploaded audio file to MIDI."""
    try:
        upload = request.files.get('file')
        if upload is None or not upload.filename:
            raise ValidationError('No audio file provided')

        data = upload.read()
        logger.info(f"File received: {upload.filename} Size: {len(data)} Type: {upload.mimetype}")
        result = convert_from_upload(upload.filename, data, get_transcriber(), get_scratch_space())
    except HTTPException:
        raise
    except ValidationError as e:
        logger.warning(f"Rejected convert-from-upload request: {e}")
        return error_response(e, 'Invalid request')
    except Exception as e:
        logger.exception(f"Error in convert-from-upload ({getattr(e, 'kind', 'unexpected')}): {e}")
        return error_response(e, 'Failed to convert audio file')

    return jsonify(result)


@app.errorhandler(RequestEntityTooLarge)
def upload_too_large(e):
    return jsonify({
        'error': 'Audio file too large',
        'details': f"Uploads are limited to {MAX_UPLOAD_MB} MB",
    }), 413


# ─── Main ─────────────────────────────────────────────────────

if __name__ == '__main__':
    port = int(os.environ.get('PORT', 5001))
    print("🎵 MIDI Converter Backend")
    print(f"   Running on http://localhost:{port}")
    app.run(host='0.0.0.0', port=port, debug=True)
