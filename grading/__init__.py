"""
Grading Pipeline
grading/

Steps:
1. Ownership check      - the variant's request must belong to the caller
2. Text extraction      - PDF / DOCX / TXT answer sheets
3. Answer extraction    - one answer per question id (strategy, regex baseline)
4. Model grading        - marking scheme + answers + course policy
5. Validation + persist - GradingResult and GRADED status in one transaction
"""
