"""
Shared constants for the layout engine.

Sizes are in world-space pixels. The renderer draws nodes with the same
NODE_WIDTH, so keep them in sync with graph_viz.
"""

# Node footprint
NODE_WIDTH = 384.0
BASE_NODE_HEIGHT = 120.0

# Content-length brackets (characters); each bracket passed adds HEIGHT_STEP
HEIGHT_BANDS = (100, 300, 600, 1000, 1600)
HEIGHT_STEP = 60.0

# Seed placement
VERTICAL_GAP = 80.0
HORIZONTAL_SPACING = 450.0
BRANCH_ROW_HEIGHT = 200.0
# Nodes whose y lies within this distance share a vertical band
BAND_TOLERANCE = 100.0

# Force relaxation
LINK_DISTANCE = 250.0
LINK_STRENGTH = 0.3
CHARGE_STRENGTH = -6000.0
CHARGE_DISTANCE_MAX = 10000.0
CHARGE_DISTANCE_MIN = 1.0
CENTER_STRENGTH = 0.1
COLLISION_STRENGTH = 2.0
# Added to half the node's larger side; 192 + 118 = 310 for a default node
COLLISION_PADDING = 118.0

ALPHA_START = 1.0
ALPHA_DECAY = 0.1
ALPHA_MIN = 0.001
VELOCITY_DECAY = 0.4
REHEAT_ALPHA = 0.3

# Write-back of simulated positions
WRITE_INTERVAL_SECONDS = 0.05
POSITION_EPSILON = 0.5
