"""Home video tour worker: Kie.ai room clips and ffmpeg tour assembly."""
