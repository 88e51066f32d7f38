"""
Heuristic background removal for vehicle photographs.

Exposes the pixel stages (border sampling, background scoring, morphology,
edge feathering), the end-to-end pipeline, recompositing, batch processing
and the FastAPI application. No trained model is involved.
"""

