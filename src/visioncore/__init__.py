"""VisionCore - batch orchestration and generation proxy for AI product imagery."""
