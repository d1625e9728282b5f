"""Release orchestration core: decoder, dispatcher, broker, rollout, controllers."""
