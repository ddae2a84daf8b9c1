"""
Test Suite for Campus Pulse

Test Organization:
- test_voting.py: Vote reconciliation engine (toggle, rollback, concurrent clicks)
- test_vote_storage.py: Server-side vote transitions and counter atomicity
- test_sse_parser.py: Incremental chat stream parsing
- test_chat_client.py: Chat endpoint transport and configuration
- test_chat_session.py: Streaming response assembly and chat history
- test_chat_storage.py: Conversation and message persistence
- test_post_storage.py: Posts, comments, best answers, notifications, communities
- test_schema.py: Database schema constraints and the posts_public view
- test_connection_manager.py: DB connection management
- test_endpoints.py: HTTP API endpoints and envelopes
- test_seed_data.py: Development seed data
- backend/utils/: Error taxonomy, notices and logging configuration

Run all tests:
    python -m pytest tests/ -v

Run specific test file:
    python -m pytest tests/test_voting.py -v
"""
