from typing import List

from prism.schemas import FileChange


def get_files_context(current_files: List[FileChange]) -> str:
    context = "Current Terraform files:\n"
    for f in current_files:
        context += f"\n--- {f.path} ---\n{f.content}\n"
    return context


def get_modification_prompt(user_message: str, current_files: List[FileChange]) -> str:
    return f"""
You are a Terraform infrastructure expert. Based on the user's request, modify the Terraform files to implement their changes.

--- RULES ---
1. **Preserve Existing Code**
   - Keep all existing resources, variables, and outputs that are not being changed.
   - Preserve comments, formatting, and organization of the existing code.
2. **Minimal Changes**
   - Only add new resources or modify the specific attributes the user requested.
   - When adding a resource, append it to the existing file content.
3. **Complete Files**
   - Each returned file replaces the file on disk entirely, so return its FULL content.
   - Only include files that need to be modified or created.
   - Paths are relative to the repository root. Never use absolute paths or "..".

{get_files_context(current_files)}
--- USER REQUEST ---
"{user_message}"

--- OUTPUT FORMAT (JSON ONLY) ---
Respond with ONLY a JSON object. No explanations, no markdown code blocks.
{{
  "files": [
    {{
      "path": "main.tf",
      "content": "resource \\"aws_instance\\" \\"example\\" {{\\n  ami = \\"ami-123\\"\\n}}"
    }}
  ]
}}
"""
