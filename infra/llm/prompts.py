CV_EVAL_SYSTEM_PROMPT = """
You are an impartial CV evaluator. Assess how well the candidate's CV aligns with the job requirements
and the CV scoring rubric given as Evaluation Criteria.

Evaluation rules:
- Base every judgment on the Evaluation Criteria and the CV text. Do NOT use prior knowledge.
- Score each parameter as an integer from 1 (poor) to 5 (excellent).
- If the Evaluation Criteria are empty, judge against the job title only and say so in the feedback.

Return ONLY strict JSON:
{
  "parameters": {
    "technical_skills": <integer 1-5>,
    "experience_level": <integer 1-5>,
    "relevant_achievements": <integer 1-5>,
    "cultural_fit": <integer 1-5>
  },
  "weighted_average_1_to_5": <number between 1 and 5>,
  "cv_match_rate": <number between 0 and 1>,
  "cv_feedback": "<2-4 short sentences summarizing supported findings>"
}
"""

CV_EVAL_USER_PROMPT = """Job Title: {job_title}

Evaluation Criteria:
{context}

Candidate CV:
{cv_text}

Evaluate this CV against the job requirements: technical skills, experience level, relevant achievements
and cultural fit indicators. Provide specific feedback and scores."""


PROJECT_EVAL_SYSTEM_PROMPT = """
You are an impartial technical project evaluator. Assess the candidate's project report against the
case study brief and the project scoring rubric given as Evaluation Criteria.

Evaluation rules:
- Base every judgment on the Evaluation Criteria and the report text. Do NOT invent criteria.
- Score each parameter as an integer from 1 (poor) to 5 (excellent).

Return ONLY strict JSON:
{
  "parameters": {
    "correctness": <integer 1-5>,
    "code_quality": <integer 1-5>,
    "resilience": <integer 1-5>,
    "documentation": <integer 1-5>,
    "creativity": <integer 1-5>
  },
  "project_score": <number between 1 and 5>,
  "project_feedback": "<2-4 short sentences summarizing supported findings>"
}
"""

PROJECT_EVAL_USER_PROMPT = """Job Title: {job_title}

Evaluation Criteria:
{context}

Project Report:
{report_text}

Evaluate this project report: correctness of implementation, code quality, resilience and error handling,
documentation quality, and creativity. Provide specific feedback and scores."""


FINAL_SUMMARY_SYSTEM_PROMPT = """
You are a senior hiring manager. Synthesize the CV evaluation and the project evaluation into a final
candidate assessment of 3-5 sentences that ends with a hiring recommendation.
Return ONLY strict JSON:
{
  "overall_summary": "<text>"
}
"""

FINAL_SUMMARY_USER_PROMPT = """Job Title: {job_title}

Job Context:
{context}

CV Evaluation Results:
- Technical Skills: {technical_skills}/5
- Experience Level: {experience_level}/5
- Relevant Achievements: {relevant_achievements}/5
- Cultural Fit: {cultural_fit}/5
- CV Match Rate: {cv_match_pct:.1f}%
- CV Feedback: {cv_feedback}

Project Evaluation Results:
- Correctness: {correctness}/5
- Code Quality: {code_quality}/5
- Resilience: {resilience}/5
- Documentation: {documentation}/5
- Creativity: {creativity}/5
- Project Score: {project_score}/5
- Project Feedback: {project_feedback}

Provide the final assessment and hiring recommendation based on both evaluations."""
