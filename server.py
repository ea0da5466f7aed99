#!/usr/bin/env python3
"""
OG Protocol Backend

HTTP service for player login:
- issues short-lived login tokens
- deploys a PlayerData contract for new players
- registers sessions in Arkacdn and validates them by client IP
"""

import logging

from flask import Blueprint, Flask, current_app, jsonify, request

from backend_config import Config
from backend_errors import BackendError, InvalidArgument, InvalidOrExpiredToken
from contract_manager import ContractManager
from session_manager import REASON_IP_MISMATCH, REASON_NO_SESSION, SessionManager

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

bp = Blueprint('backend', __name__)


def _sessions() -> SessionManager:
    return current_app.extensions['sessions']


def _contracts() -> ContractManager:
    return current_app.extensions['contracts']


def _is_nonempty_str(value) -> bool:
    return isinstance(value, str) and len(value) > 0


# ============================================================================
# Service Endpoints
# ============================================================================

@bp.route('/')
def index():
    return 'OG Protocol Backend is running!'


@bp.route('/health')
def health():
    """Health check endpoint"""
    return jsonify({
        'status': 'healthy',
        'contracts_configured': _contracts().account is not None,
    })


@bp.route('/contract/status', methods=['GET'])
def contract_status():
    """Current status of the smart contract integration"""
    return jsonify(_contracts().status())


# ============================================================================
# Token Endpoints
# ============================================================================

@bp.route('/token', methods=['GET'])
def create_token():
    """
    Create a login token for a username.
    GET /token?username=<username>

    The player does not need to be registered yet; the token is bound to
    the username string only.
    """
    username = request.args.get('username')
    if not _is_nonempty_str(username):
        return jsonify({'error': 'username query parameter is required'}), 400

    try:
        token = _sessions().create_token(username, {'createdFor': username})
        return jsonify({'token': token})
    except Exception as e:
        logger.error(f"Failed to create token: {e}", exc_info=True)
        return jsonify({'error': str(e) or 'Failed to create token'}), 500


@bp.route('/token/validate/<token_id>', methods=['GET'])
def validate_token(token_id: str):
    """
    Validate a token by id.
    GET /token/validate/<id>
    """
    try:
        token = _sessions().get_token(token_id)
        if token is None:
            return jsonify({'valid': False}), 404
        return jsonify({'valid': True, 'token': token.to_dict()})
    except Exception as e:
        logger.error(f"Token validation failed: {e}", exc_info=True)
        return jsonify({'error': str(e) or 'Token validation failed'}), 500


# ============================================================================
# Session Endpoints
# ============================================================================

@bp.route('/login', methods=['POST'])
def login():
    """
    Login with a previously issued token.
    POST /login {username, token, address, ip}

    Deploys the player's contract on first login, then registers the
    session in Arkacdn.
    """
    data = request.get_json(silent=True) or {}
    username = data.get('username')
    token = data.get('token')
    address = data.get('address')
    ip = data.get('ip')

    sessions = _sessions()
    stored = sessions.get_token(token) if _is_nonempty_str(token) else None
    if stored is None or stored.username != username:
        return jsonify({'error': 'Invalid or expired token'}), 401

    if not _is_nonempty_str(address):
        return jsonify({'error': 'address (wallet) is required in body'}), 400
    if not _is_nonempty_str(ip):
        return jsonify({'error': 'ip is required in body'}), 400

    contracts = _contracts()
    if contracts.get_player_record(username) is None:
        try:
            contract_address = contracts.create_contract(username, address)
            logger.info(f"Auto-registered user {username} with contract {contract_address}")
        except Exception as e:
            logger.error(f"Failed to auto-register user {username}: {e}", exc_info=True)
            return jsonify({'error': 'Failed to auto-register user', 'details': str(e)}), 500

    try:
        result = sessions.register_session(token, ip)
    except (InvalidArgument, InvalidOrExpiredToken) as e:
        return jsonify({'error': e.message}), e.status_code
    except Exception as e:
        logger.error(f"Failed to register session: {e}", exc_info=True)
        return jsonify({'error': str(e) or 'Failed to register session'}), 502

    response = {'message': 'Session registered'}
    response.update(result.to_dict())
    return jsonify(response)


@bp.route('/validatesession', methods=['POST'])
def validate_session():
    """
    Validate the session of a username from an ip.
    POST /validatesession {username, ip}

    - 200: session exists and was registered from this ip
    - 404: no session for the username (reason = no_session)
    - 409: session exists but the ip differs (reason = ip_mismatch)
    - 502: Arkacdn could not be queried
    """
    data = request.get_json(silent=True) or {}
    username = data.get('username')
    ip = data.get('ip')
    if not _is_nonempty_str(username) or not _is_nonempty_str(ip):
        return jsonify({'error': 'username and ip (strings) are required in body'}), 400

    try:
        result = _sessions().get_session_for_username(username, ip)
    except BackendError as e:
        logger.error(f"get_session_for_username error: {e}")
        return jsonify({'error': e.message}), 502
    except Exception as e:
        logger.error(f"validatesession failed: {e}", exc_info=True)
        return jsonify({'error': str(e) or 'validatesession failed'}), 500

    if result.allowed:
        return jsonify({'ok': True, 'fileId': result.file_id, 'session': result.session})
    if result.reason == REASON_IP_MISMATCH:
        return jsonify({'ok': False, 'reason': REASON_IP_MISMATCH}), 409
    if result.reason == REASON_NO_SESSION:
        return jsonify({'ok': False, 'reason': REASON_NO_SESSION}), 404

    return jsonify({'error': 'Unexpected validation result', 'result': result.to_dict()}), 500


# ============================================================================
# Player Endpoints
# ============================================================================

@bp.route('/user/<username>', methods=['GET'])
def get_user(username: str):
    """Contract record and on-chain kills of a player"""
    contracts = _contracts()
    if contracts.get_player_record(username) is None:
        return jsonify({'error': 'User not found'}), 404

    try:
        return jsonify(contracts.get_user_contract(username))
    except BackendError as e:
        return jsonify({'error': e.message}), e.status_code
    except Exception as e:
        logger.error(f"Reading contract for {username} failed: {e}", exc_info=True)
        return jsonify({'error': str(e)}), 500


def create_app(config: Config = None, sessions: SessionManager = None,
               contracts: ContractManager = None) -> Flask:
    """Build the Flask app; collaborators default to ones built from config"""
    if config is None:
        config = Config.from_env()
    logging.getLogger().setLevel(config.log_level)

    app = Flask(__name__)
    app.config['BACKEND'] = config
    app.extensions['sessions'] = sessions or SessionManager.from_config(config)
    app.extensions['contracts'] = contracts or ContractManager.from_config(config)
    app.register_blueprint(bp)

    return app


if __name__ == '__main__':
    config = Config.from_env()
    app = create_app(config)

    logger.info("=" * 70)
    logger.info("OG Protocol Backend Starting")
    logger.info("=" * 70)
    logger.info(f"Arkacdn: {config.arkacdn_url}")
    logger.info(f"Data directory: {config.data_dir}")
    logger.info(f"RPC: {config.rpc_url}")
    logger.info("=" * 70)

    app.run(host='0.0.0.0', port=config.port, debug=False)
