"""Fill-in-the-middle and chat scratchpads that build prompts and shape model output."""