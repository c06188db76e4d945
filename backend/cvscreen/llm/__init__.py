from cvscreen.llm.scoring import CvScorer, build_prompt, parse_analysis

__all__ = ["CvScorer", "build_prompt", "parse_analysis"]
