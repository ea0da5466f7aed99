"""
Unit Tests

Individual component tests:
- test_json_store.py: JSON key-value store
- test_arkacdn_client.py: Arkacdn client and credential refresh
- test_session_manager.py: Tokens, session registration and validation
- test_contract_manager.py: PlayerData contract deployment and reads
- test_server.py: HTTP endpoints
"""
