"""Click CLI for sidechat."""
