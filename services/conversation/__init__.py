"""Per-call conversation state, step machine and turn orchestration"""
