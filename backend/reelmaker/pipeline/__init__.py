"""
Highlight pipeline: AI-picked peak moments packed into a short reel.

Pipeline stages:
1. Fetch: stream the source video into a per-run scratch workspace
2. Detect: ask the detection service for peak moments and parse its answer
3. Allocate: pack the moments into the reel duration budget
4. Extract: cut each planned segment with a frame-accurate re-encode
5. Concatenate: join the clips, in plan order, with a stream copy
6. Finalize: move the reel to its destination and clean up the workspace

The runner lives in `reelmaker.pipeline.runner`.
"""

__version__ = "1.0.0"
