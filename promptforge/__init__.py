"""
PromptForge: a workbench for composing, refining and chaining RICCE prompts.

Compose prompts from Role, Instruction, Context, Constraints and Evaluation,
critique them with a language model, and execute them as single calls,
side-by-side model comparisons, or multi-stage chains.
"""

__version__ = "0.1.0"
