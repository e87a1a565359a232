"""Run orchestration for isomsea."""

from isomsea.pipeline.run import MSEARun, RunDiagnostics, run_msea, run_msea_contrasts

__all__ = ["MSEARun", "RunDiagnostics", "run_msea", "run_msea_contrasts"]
